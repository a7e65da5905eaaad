"""Tests for the static extractor registry and the code-knowledge extractor."""

from knowledge_sorter.extractors import (
    CodeKnowledgeExtractor,
    ExtractedKnowledge,
    ExtractorRegistration,
    ExtractorRegistry,
)


class ShoutExtractor:
    """Test extractor accepting fragments with an exclamation mark."""

    name = "shout"

    def matches(self, content, metadata=None):
        return "!" in content

    def extract(self, content, context=None):
        return ExtractedKnowledge(category="shouting", tags=["shout"])


class BrokenExtractor:
    name = "broken"

    def matches(self, content, metadata=None):
        raise RuntimeError("boom")

    def extract(self, content, context=None):
        raise AssertionError("never called")


class TestCodeKnowledgeExtractor:
    """Tests for CodeKnowledgeExtractor."""

    def setup_method(self):
        self.extractor = CodeKnowledgeExtractor()

    def test_matches_code(self):
        assert self.extractor.matches("class OrderBook handles matching")
        assert self.extractor.matches("const total = items.length")
        assert not self.extractor.matches("Remember to rotate the staging credentials")

    def test_class_definition(self):
        result = self.extractor.extract("class OrderBook keeps bids sorted")

        assert result.category == "class-definition"
        assert result.title == "Class: OrderBook"
        assert result.tags[:2] == ["class", "orderbook"]

    def test_function(self):
        result = self.extractor.extract("async function loadLots() { await fetch(url) }")

        assert result.category == "function"
        assert result.title == "Function: loadLots"
        assert "async" in result.tags

    def test_import(self):
        result = self.extractor.extract("import { useState } from 'react'")

        assert result.category == "dependency"
        assert result.title == "Import: react"
        assert {"import", "dependency", "react", "hooks"} <= set(result.tags)

    def test_summary_collapses_whitespace(self):
        result = self.extractor.extract("const  a =\n\n  1")
        assert result.summary == "const a = 1"


class TestExtractorRegistry:
    """Tests for ExtractorRegistry."""

    def test_default_registry(self):
        registry = ExtractorRegistry()

        assert len(registry) == 1
        assert isinstance(registry.get("code-knowledge"), CodeKnowledgeExtractor)
        assert registry.list()[0]["display_name"] == "Code Knowledge"

    def test_priority_order(self):
        registry = ExtractorRegistry(
            [
                ExtractorRegistration(name="code-knowledge", extractor=CodeKnowledgeExtractor(), priority=1),
                ExtractorRegistration(name="shout", extractor=ShoutExtractor(), priority=5),
            ]
        )

        assert [r["name"] for r in registry.list()] == ["shout", "code-knowledge"]
        assert registry.find_matching("class Foo!").name == "shout"
        assert [e.name for e in registry.find_all_matching("class Foo!")] == ["shout", "code-knowledge"]

    def test_disabled_registrations_skipped(self):
        registry = ExtractorRegistry(
            [ExtractorRegistration(name="shout", extractor=ShoutExtractor(), enabled=False)]
        )

        assert len(registry) == 0
        assert registry.get("shout") is None
        assert registry.find_matching("LOUD!") is None

    def test_failing_matcher_is_skipped(self):
        registry = ExtractorRegistry(
            [
                ExtractorRegistration(name="broken", extractor=BrokenExtractor(), priority=10),
                ExtractorRegistration(name="shout", extractor=ShoutExtractor()),
            ]
        )

        assert registry.find_matching("LOUD NOISES!").name == "shout"
        assert [e.name for e in registry.find_all_matching("LOUD NOISES!")] == ["shout"]

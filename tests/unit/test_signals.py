"""Tests for the signal scorer.

Covers:
- Weighted alias/path/keyword scoring
- Confidence bounds and the weak-match fallback rule
- Signature loading precedence (file, datastore, built-ins)
"""

import json

import pytest

from knowledge_sorter.models import ProjectSignature
from knowledge_sorter.signals import (
    DEFAULT_SIGNATURES,
    FALLBACK_CONFIDENCE,
    SignalScorer,
    load_signatures,
    load_signatures_file,
)


class TestDetect:
    """Tests for SignalScorer.detect()."""

    def test_auction_domain_text_detected(self, scorer):
        """Auction vocabulary picks the auction project above the threshold."""
        detection = scorer.detect("auction bid increment for lot")

        assert detection.project == "auction-house"
        assert detection.confidence > 0.3
        # alias 3 + three keywords at 0.5 each
        assert detection.confidence == pytest.approx(0.45)
        assert "alias: auction" in detection.matched_signals

    def test_keywords_count_every_occurrence(self, scorer):
        """Keyword points scale with occurrence count."""
        detection = scorer.detect("auction: bid, bid, bid")

        assert detection.project == "auction-house"
        assert detection.confidence == pytest.approx(0.45)
        assert "keyword: bid (3x)" in detection.matched_signals

    def test_keywords_match_on_word_boundaries(self, scorer):
        """'bidding' must not count as the keyword 'bid'."""
        detection = scorer.detect("auction bidding war")

        assert not any(s.startswith("keyword: bid") for s in detection.matched_signals)

    def test_aliases_are_case_insensitive(self, scorer):
        detection = scorer.detect("The AUCTION closes at noon, final bid wins")
        assert "alias: auction" in detection.matched_signals

    def test_path_fragments_are_case_sensitive(self, scorer):
        """Path fragments only match with their exact casing."""
        lower = scorer.detect("deployed auction-house build")
        upper = scorer.detect("deployed AUCTION-HOUSE build")

        assert "path: auction-house" in lower.matched_signals
        assert "path: auction-house" not in upper.matched_signals

    def test_weight_dampens_score(self, scorer, studio_signature):
        """A 0.8-weight project earns 0.8 of the alias points."""
        score, matched = scorer.score("studio sidebar", studio_signature)

        assert score == pytest.approx(3 * 0.8 + 0.5 * 0.8)
        assert matched == ["alias: studio", "keyword: sidebar (1x)"]

    def test_confidence_capped_at_one(self, scorer):
        detection = scorer.detect("auction auction-house " + "bid lot reserve " * 20)
        assert detection.confidence == 1.0

    def test_weak_match_falls_back(self, scorer):
        """Below 0.3 the fallback wins at the fixed fallback confidence."""
        detection = scorer.detect("someone placed a bid on this lot", fallback="studio")

        assert detection.project == "studio"
        assert detection.confidence == FALLBACK_CONFIDENCE
        assert "fallback" in detection.reason

    def test_weak_match_without_fallback_is_unattributed(self, scorer):
        detection = scorer.detect("someone placed a bid on this lot")

        assert detection.project is None
        assert detection.confidence == FALLBACK_CONFIDENCE

    def test_lower_min_confidence_accepts_weak_match(self, scorer):
        detection = scorer.detect("someone placed a bid on this lot", min_confidence=0.1)

        assert detection.project == "auction-house"
        assert detection.confidence == pytest.approx(0.1)

    def test_weak_match_that_is_the_fallback_keeps_its_score(self, scorer):
        """When the weak match is the fallback, its own confidence is kept."""
        detection = scorer.detect("bid bid bid", fallback="auction-house")

        assert detection.project == "auction-house"
        assert detection.confidence == pytest.approx(0.15)

    @pytest.mark.parametrize("content", ["", None, 42, ["auction"]])
    def test_empty_or_non_text_returns_fallback_at_zero(self, scorer, content):
        detection = scorer.detect(content, fallback="studio")

        assert detection.project == "studio"
        assert detection.confidence == 0.0

    def test_ties_keep_registry_order(self):
        """Equal scores resolve to the signature registered first."""
        first = ProjectSignature(id="first", name="First", aliases=("shared", "common"))
        second = ProjectSignature(id="second", name="Second", aliases=("shared", "common"))

        assert SignalScorer([first, second]).detect("shared common thing").project == "first"
        assert SignalScorer([second, first]).detect("shared common thing").project == "second"

    @pytest.mark.parametrize(
        "content",
        [
            "auction bid increment for lot",
            "Fixed the sidebar panel in the studio terminal",
            "nothing relevant at all",
            "engine-dev 5101 auction bid lot paddle gavel hammer",
            "jwt token login logout session oauth password credential auth",
        ],
    )
    def test_confidence_always_in_unit_interval(self, content):
        """Property: every detection lands in [0, 1] with the default registry."""
        detection = SignalScorer().detect(content, fallback="dev-studio-5000")
        assert 0.0 <= detection.confidence <= 1.0


class TestDefaultSignatures:
    """Tests against the built-in signature table."""

    def test_default_registry_loaded(self):
        scorer = SignalScorer()
        ids = [p["id"] for p in scorer.list_projects()]
        assert ids == [sig.id for sig in DEFAULT_SIGNATURES]

    def test_auth_vocabulary_detected(self):
        detection = SignalScorer().detect("auth service rejects the jwt token after login")

        assert detection.project == "auth-7000"
        assert detection.confidence >= 0.3

    def test_generic_auction_words_alone_are_weak(self):
        """Keywords without an alias stay below the threshold."""
        detection = SignalScorer().detect("auction bid increment for lot")
        assert detection.confidence < 0.3


class TestDetectAll:
    def test_lists_every_mentioned_project(self, scorer):
        results = scorer.detect_all("moved the studio panel into auction-house")

        assert [r["project"] for r in results] == ["auction-house", "studio"]
        assert results[0]["score"] == 5
        assert results[0]["matches"] == ["auction", "auction-house"]
        assert results[1]["score"] == 3

    def test_empty_content(self, scorer):
        assert scorer.detect_all("") == []
        assert scorer.detect_all(None) == []


class TestLoadSignatures:
    """Tests for signature registry assembly."""

    def test_load_list_file(self, tmp_path, auction_signature):
        path = tmp_path / "signatures.json"
        path.write_text(json.dumps([auction_signature.to_dict()]))

        signatures = load_signatures_file(path)

        assert signatures == [auction_signature]

    def test_load_dict_file(self, tmp_path):
        path = tmp_path / "signatures.json"
        path.write_text(json.dumps({"crm": {"name": "CRM", "aliases": ["CRM"], "paths": ["crm/"]}}))

        (signature,) = load_signatures_file(path)

        assert signature.id == "crm"
        assert signature.aliases == ("crm",)
        assert signature.path_fragments == ("crm/",)
        assert signature.weight == 1.0

    def test_file_beats_store(self, tmp_path, store, auction_signature, studio_signature):
        store.upsert_signature(studio_signature)
        path = tmp_path / "signatures.json"
        path.write_text(json.dumps([auction_signature.to_dict()]))

        assert load_signatures(store, path) == (auction_signature,)

    def test_store_beats_defaults(self, store, auction_signature, studio_signature):
        store.upsert_signature(studio_signature)
        store.upsert_signature(auction_signature)

        assert load_signatures(store) == (studio_signature, auction_signature)

    def test_defaults_when_nothing_registered(self, store):
        assert load_signatures(store) == DEFAULT_SIGNATURES
        assert load_signatures() == DEFAULT_SIGNATURES

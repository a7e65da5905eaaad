"""Tests for record helpers and reference-data models."""

import pytest

from knowledge_sorter.models import (
    ProjectSignature,
    Resolution,
    dedup_key,
    make_title,
    map_priority,
    normalize_title,
)


class TestTitles:
    def test_make_title_first_line(self):
        assert make_title("  Use WAL mode\nbecause readers block") == "Use WAL mode"

    def test_make_title_skips_blank_lines(self):
        assert make_title("\n\n  Always pin the node version\nin .nvmrc") == "Always pin the node version"
        assert make_title("\n \n\t") == ""

    def test_make_title_truncates(self):
        assert len(make_title("x" * 500)) == 200

    def test_normalize_title(self):
        assert normalize_title("  Use\tWAL   Mode ") == "use wal mode"
        assert normalize_title(None) == ""
        assert len(normalize_title("y" * 300)) == 100

    def test_dedup_key_scope(self):
        assert dedup_key("app", "/srv/app", "Title") == ("app", "title")
        assert dedup_key(None, "/srv/app", "Title") == ("/srv/app", "title")
        assert dedup_key(None, None, "Title") == ("", "title")


@pytest.mark.parametrize(
    "raw,expected",
    [("low", "low"), ("normal", "medium"), ("HIGH", "high"), ("critical", "critical"), (None, "medium"), ("meh", "medium")],
)
def test_map_priority(raw, expected):
    assert map_priority(raw) == expected


def test_resolution_terminal_status():
    assert Resolution.BOTH_VALID.terminal_status.value == "resolved_both_valid"
    assert Resolution("keep_existing").terminal_status.value == "resolved_keep_existing"


class TestProjectSignature:
    def test_from_dict_lowercases_aliases(self):
        signature = ProjectSignature.from_dict({"id": "app", "aliases": ["MyApp"], "paths": ["app/"]})

        assert signature.name == "app"
        assert signature.aliases == ("myapp",)
        assert signature.path_fragments == ("app/",)
        assert signature.weight == 1.0

    def test_to_dict_lists(self):
        data = ProjectSignature(id="app", name="App", keywords=("a", "b")).to_dict()
        assert data["keywords"] == ["a", "b"]
        assert data["aliases"] == []

"""Tests for path normalization and longest-prefix resolution."""

import json

import pytest

from knowledge_sorter.models import ProjectPathRecord
from knowledge_sorter.paths import (
    LEGACY_ROOTS,
    PathNormalizer,
    PathResolver,
    load_legacy_roots,
    normalize_path,
)


class TestNormalizePath:
    """Tests for normalize_path()."""

    def test_legacy_root_mapped_to_canonical(self):
        """A Windows workstation path lands under the server root."""
        assert normalize_path(r"C:\Projects\NextBid_Dev\foo") == "/var/www/NextBid_Dev/foo"

    def test_legacy_root_is_case_insensitive(self):
        assert normalize_path(r"c:\projects\nextbid_dev\foo\bar.js") == "/var/www/NextBid_Dev/foo/bar.js"

    def test_most_specific_legacy_root_wins(self):
        """Studio\\ai-team is more specific than any broader legacy root."""
        assert normalize_path(r"C:\Projects\Studio\ai-team\worker.js") == "/var/www/Studio/ai-team/worker.js"

    def test_legacy_root_requires_path_boundary(self):
        """NextBid_Dev2 is not under NextBid_Dev."""
        assert normalize_path(r"C:\Projects\NextBid_Dev2\x") == "C:/Projects/NextBid_Dev2/x"

    def test_backslashes_and_trailing_slash(self):
        assert normalize_path("/var/www/app/") == "/var/www/app"
        assert normalize_path(r"\\share\dir\\") == "//share/dir"

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty_input(self, raw):
        assert normalize_path(raw) is None

    def test_root_path_kept(self):
        assert normalize_path("/") == "/"

    def test_custom_legacy_table(self):
        normalizer = PathNormalizer({r"D:\work": "/srv/work"})
        assert normalizer(r"D:\work\api\main.py") == "/srv/work/api/main.py"
        # Built-in roots are not applied when a table is given
        assert normalizer(r"C:\Projects\NextBid_Dev\foo") == "C:/Projects/NextBid_Dev/foo"


class TestPathResolver:
    """Tests for PathResolver.resolve()."""

    def test_deeper_registered_path_wins(self, resolver):
        """A file under both ai-team and ai-team/sub belongs to sub."""
        match = resolver.resolve("/var/www/Studio/ai-team/sub/file.js")

        assert match is not None
        assert match.project_id == "studio-sub"
        assert match.path == "/var/www/Studio/ai-team/sub"
        assert match.exact is False

    def test_parent_path_still_resolves_to_parent(self, resolver):
        match = resolver.resolve("/var/www/Studio/ai-team/other/file.js")
        assert match.project_id == "studio"

    def test_exact_match(self, resolver):
        match = resolver.resolve("/srv/auction-house/")

        assert match.project_id == "auction-house"
        assert match.exact is True
        assert match.client_id == "nextbid"
        assert match.platform_id == "web"

    @pytest.mark.parametrize(
        "path",
        ["/var/www/Studio/ai-team2/x", "/srv/auction-house-old/main.py", "/srv/auction"],
    )
    def test_prefix_requires_path_boundary(self, resolver, path):
        """Sibling directories sharing a name prefix do not match."""
        assert resolver.resolve(path) is None

    def test_unknown_path_returns_none(self, resolver):
        assert resolver.resolve("/home/someone/scratch") is None
        assert resolver.resolve(None) is None

    def test_legacy_path_normalized_before_matching(self, seeded_store):
        """Legacy input resolves against canonical registered paths."""
        seeded_store.add_project("foo", "Foo")
        seeded_store.register_path("foo", "/var/www/NextBid_Dev/foo")
        resolver = PathResolver.from_store(seeded_store)

        match = resolver.resolve(r"C:\Projects\NextBid_Dev\foo\src\index.js")

        assert match.project_id == "foo"
        assert match.path == "/var/www/NextBid_Dev/foo"

    def test_legacy_registered_path_normalized_on_load(self, seeded_store):
        seeded_store.add_project("legacy", "Legacy")
        seeded_store.register_path("legacy", r"C:\Projects\NextBid_Dev\legacy", path_type="local")
        resolver = PathResolver.from_store(seeded_store)

        assert resolver.resolve("/var/www/NextBid_Dev/legacy/app.py").project_id == "legacy"

    def test_index_sorted_longest_first(self, resolver):
        lengths = [len(r.path) for r in resolver.records]
        assert lengths == sorted(lengths, reverse=True)

    def test_duplicate_paths_keep_first_registration(self):
        resolver = PathResolver(
            [
                ProjectPathRecord(path="/srv/app", project_id="first"),
                ProjectPathRecord(path="/srv/app/", project_id="second"),
            ]
        )

        assert len(resolver) == 1
        assert resolver.resolve("/srv/app/x").project_id == "first"

    def test_for_project_prefers_server_path(self):
        resolver = PathResolver(
            [
                ProjectPathRecord(path="/home/dev/app", project_id="app", path_type="local"),
                ProjectPathRecord(path="/srv/app", project_id="app", path_type="server"),
            ]
        )

        assert resolver.for_project("app").path == "/srv/app"
        assert resolver.for_project("missing") is None


class TestLoadLegacyRoots:
    def test_defaults_without_file(self):
        assert load_legacy_roots(None) == LEGACY_ROOTS

    def test_file_extends_defaults(self, tmp_path):
        path = tmp_path / "roots.json"
        path.write_text(json.dumps({r"E:\code": "/srv/code"}))

        roots = load_legacy_roots(path)

        assert roots[r"E:\code"] == "/srv/code"
        assert set(LEGACY_ROOTS).issubset(roots)

"""Tests for cache keys."""

from __future__ import annotations

from volcache.core.config import Tag
from volcache.snapshot.keys import CacheKey, default_branch_key, sanitize_branch


class TestSanitizeBranch:
    """Branch names embedded in resource names."""

    def test_strips_heads_prefix_and_separators(self):
        assert sanitize_branch("refs/heads/feature/login") == "feature-login"

    def test_length_cap(self):
        name = sanitize_branch("refs/heads/" + "x" * 100)
        assert len(name) == 40

    def test_other_refs_keep_their_path(self):
        assert sanitize_branch("refs/pull/7/merge") == "refs-pull-7-merge"


class TestCacheKey:
    """Tests for CacheKey identity and tags."""

    def test_tags(self):
        key = CacheKey.build("v1", "main", "acme/app", [Tag(key="team", value="infra")])

        assert key.tags() == {
            "team": "infra",
            "runs-on-snapshot-branch": "v1-refs/heads/main",
            "runs-on-snapshot-repository": "acme/app",
        }

    def test_reserved_tags_win_over_custom_tags(self):
        key = CacheKey.build("v1", "main", "acme/app", [("runs-on-snapshot-repository", "evil/repo")])
        assert key.tags()["runs-on-snapshot-repository"] == "acme/app"

    def test_custom_tags_compare_as_set(self):
        a = CacheKey.build("v1", "main", "acme/app", [("a", "1"), ("b", "2")])
        b = CacheKey.build("v1", "main", "acme/app", [("b", "2"), ("a", "1")])
        assert a == b
        assert hash(a) == hash(b)

    def test_any_field_difference_breaks_equality(self):
        base = CacheKey.build("v1", "main", "acme/app")
        assert base != CacheKey.build("v2", "main", "acme/app")
        assert base != CacheKey.build("v1", "dev", "acme/app")
        assert base != CacheKey.build("v1", "main", "acme/other")
        assert base != CacheKey.build("v1", "main", "acme/app", [("a", "1")])

    def test_from_config(self, make_config):
        config = make_config(
            github_ref="refs/heads/feature/x",
            custom_tags=[{"key": "team", "value": "infra"}],
        )
        key = CacheKey.from_config(config)

        assert key.branch_ref == "refs/heads/feature/x"
        assert key.custom_tags == frozenset({("team", "infra")})
        assert key.branch_label == "feature-x"


class TestDefaultBranchKey:
    """Tests for default_branch_key()."""

    def test_fallback_key_keeps_everything_but_branch(self):
        key = CacheKey.build("v1", "refs/heads/feature/x", "acme/app", [("team", "infra")])

        fallback = default_branch_key(key, "main")

        assert fallback is not None
        assert fallback.branch_ref == "refs/heads/main"
        assert fallback.custom_tags == key.custom_tags
        assert fallback.version == key.version

    def test_no_default_branch(self):
        key = CacheKey.build("v1", "main", "acme/app")
        assert default_branch_key(key, None) is None

    def test_same_branch_adds_nothing(self):
        key = CacheKey.build("v1", "refs/heads/main", "acme/app")
        assert default_branch_key(key, "main") is None

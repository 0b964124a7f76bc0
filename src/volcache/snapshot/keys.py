"""Cache keys: the tag set identifying one branch-scoped cache lineage."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace

from volcache.core.config import SnapshotterConfig, Tag, normalize_ref
from volcache.core.constants import (
    BRANCH_NAME_MAX_CHARS,
    SNAPSHOT_BRANCH_TAG_KEY,
    SNAPSHOT_REPOSITORY_TAG_KEY,
)


def sanitize_branch(ref: str, max_chars: int = BRANCH_NAME_MAX_CHARS) -> str:
    """Make a git ref safe to embed in a resource name.

    >>> sanitize_branch("refs/heads/feature/login")
    'feature-login'
    """
    name = ref.removeprefix("refs/heads/")
    name = name.replace("/", "-").replace("\\", "-")
    return name[:max_chars]


@dataclass(frozen=True)
class CacheKey:
    """Identity of a cache lineage.

    Two keys are equal iff every field matches; custom tags compare as an
    unordered set of ``(key, value)`` pairs.
    """

    version: str
    branch_ref: str
    repository: str
    custom_tags: frozenset[tuple[str, str]] = frozenset()

    @classmethod
    def build(
        cls,
        version: str,
        branch_ref: str,
        repository: str,
        custom_tags: Iterable[Tag | tuple[str, str]] = (),
    ) -> CacheKey:
        pairs = frozenset(
            (t.key, t.value) if isinstance(t, Tag) else (t[0], t[1]) for t in custom_tags
        )
        return cls(
            version=version,
            branch_ref=normalize_ref(branch_ref),
            repository=repository,
            custom_tags=pairs,
        )

    @classmethod
    def from_config(cls, config: SnapshotterConfig) -> CacheKey:
        return cls.build(
            config.version,
            config.github_ref,
            config.github_repository,
            config.custom_tags,
        )

    def with_branch(self, branch_ref: str) -> CacheKey:
        """The same lineage on another branch (used for default-branch fallback)."""
        return replace(self, branch_ref=normalize_ref(branch_ref))

    @property
    def branch_tag_value(self) -> str:
        return f"{self.version}-{self.branch_ref}"

    @property
    def branch_label(self) -> str:
        """Sanitized branch name for generated resource names."""
        return sanitize_branch(self.branch_ref)

    def tags(self) -> dict[str, str]:
        """Tags carried by every volume and snapshot of this lineage.

        Reserved keys win over custom tags with the same key.
        """
        tags = dict(sorted(self.custom_tags))
        tags[SNAPSHOT_BRANCH_TAG_KEY] = self.branch_tag_value
        tags[SNAPSHOT_REPOSITORY_TAG_KEY] = self.repository
        return tags


def default_branch_key(key: CacheKey, default_branch: str | None) -> CacheKey | None:
    """Fallback key for ``default_branch``, or None when it adds nothing."""
    if not default_branch:
        return None
    fallback = key.with_branch(default_branch)
    if fallback == key:
        return None
    return fallback

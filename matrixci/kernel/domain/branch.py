"""Branch-name predicate gating every publish side effect."""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase

DEFAULT_MAINLINE = "main-line"
DEFAULT_RELEASE_PATTERN = "release/*"


@dataclass(frozen=True, slots=True)
class PublishPolicy:
    """Publishing is allowed on the main-line branch and on release branches.

    Examples
    --------
    >>> policy = PublishPolicy()
    >>> policy.allows("main-line"), policy.allows("release/1.3"), policy.allows("feature-x")
    (True, True, False)
    """

    mainline: str = DEFAULT_MAINLINE
    release_pattern: str = DEFAULT_RELEASE_PATTERN

    def allows(self, branch: str) -> bool:
        return branch == self.mainline or fnmatchcase(branch, self.release_pattern)

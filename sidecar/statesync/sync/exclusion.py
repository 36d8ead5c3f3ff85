"""
Exclusion policy for state mirroring.

Patterns are shell globs matched against the "/"-separated path relative
to the mirrored root, where "*" also crosses directory separators (the
same semantics as `aws s3 sync --exclude`).

Invariants:
    - The same policy object is applied on push and pull
    - Live database files are always excluded on backup; they travel
      through the snapshot path instead
    - The gateway config file is ordinary state and is never excluded
"""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Iterable

# Lock files, temp files and the ephemeral media cache (2-minute TTL).
BASE_PATTERNS = ("*.lock", "*.tmp", "media/*")

# Live databases plus their write-ahead log and shared-memory files.
LIVE_DATABASE_PATTERNS = (
    "memory/*.sqlite",
    "memory/*.sqlite-wal",
    "memory/*.sqlite-shm",
)


@dataclass(frozen=True)
class ExclusionPolicy:
    """An ordered set of glob patterns excluded from mirroring.

    Example:
        >>> policy = ExclusionPolicy.for_backup()
        >>> policy.matches("memory/main.sqlite")
        True
        >>> policy.matches("openclaw.json")
        False
    """

    patterns: tuple[str, ...] = BASE_PATTERNS

    @classmethod
    def for_backup(cls) -> ExclusionPolicy:
        """Policy for pushing the state dir to files/."""
        return cls(BASE_PATTERNS + LIVE_DATABASE_PATTERNS)

    @classmethod
    def for_restore(cls) -> ExclusionPolicy:
        """Policy for pulling files/ and sqlite/ back into the state dir."""
        return cls(BASE_PATTERNS)

    def with_patterns(self, extra: Iterable[str]) -> ExclusionPolicy:
        """Return a copy with extra patterns appended (duplicates dropped)."""
        merged = list(self.patterns)
        for pattern in extra:
            if pattern not in merged:
                merged.append(pattern)
        return ExclusionPolicy(tuple(merged))

    def matches(self, relative_path: str) -> bool:
        """Whether relative_path is excluded."""
        return any(fnmatchcase(relative_path, pattern) for pattern in self.patterns)

    def __iter__(self):
        return iter(self.patterns)

    def __len__(self) -> int:
        return len(self.patterns)

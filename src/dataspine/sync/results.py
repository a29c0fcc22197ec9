"""Result types returned by the synchronization engine and entity facade.

Expected conditions (a row failing validation, an optimistic conflict, a
fetch that found nothing) are data here, not exceptions.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from dataspine.core.errors import DataSpineError


@dataclass(frozen=True)
class RowError:
    """One rejected row: where it lives, which kind of failure, and why."""

    container: str
    index: int | None
    key: Any
    kind: str
    message: str

    @classmethod
    def from_error(
        cls,
        error: DataSpineError,
        *,
        container: str,
        index: int | None,
        key: Any,
    ) -> RowError:
        return cls(container, index, key, type(error).__name__, error.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "container": self.container,
            "index": self.index,
            "key": self.key,
            "kind": self.kind,
            "message": self.message,
        }


@dataclass
class SyncResult:
    """Counts and rejected rows of one engine call."""

    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    skipped_noop: int = 0
    skipped_blank: int = 0
    errors: list[RowError] = field(default_factory=list)
    not_attempted: list[Any] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and not self.not_attempted

    @property
    def store_writes(self) -> int:
        return self.inserted + self.updated + self.deleted

    def merge(self, other: SyncResult) -> SyncResult:
        """Fold *other* into this result (in place) and return self."""
        self.inserted += other.inserted
        self.updated += other.updated
        self.deleted += other.deleted
        self.skipped_noop += other.skipped_noop
        self.skipped_blank += other.skipped_blank
        self.errors.extend(other.errors)
        self.not_attempted.extend(other.not_attempted)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "inserted": self.inserted,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped_noop": self.skipped_noop,
            "skipped_blank": self.skipped_blank,
            "errors": [e.to_dict() for e in self.errors],
            "not_attempted": list(self.not_attempted),
        }


@dataclass
class FetchResult:
    """``found`` plus the dataset that was populated. Unpacks as a pair."""

    found: bool
    dataset: Any
    error: RowError | None = None

    def __iter__(self) -> Iterator[Any]:
        yield self.found
        yield self.dataset

    def __bool__(self) -> bool:
        return self.found


@dataclass
class SaveResult:
    """``success`` plus every rejected row. Unpacks as a pair."""

    success: bool
    errors: list[RowError] = field(default_factory=list)
    sync: SyncResult | None = None

    def __iter__(self) -> Iterator[Any]:
        yield self.success
        yield self.errors

    def __bool__(self) -> bool:
        return self.success

    def messages(self) -> list[tuple[Any, str]]:
        """``(row key, message)`` pairs."""
        return [(e.key, e.message) for e in self.errors]


__all__ = [
    "FetchResult",
    "RowError",
    "SaveResult",
    "SyncResult",
]

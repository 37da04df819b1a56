"""Result models for sync passes."""

from dataclasses import dataclass, field
from enum import Enum


class ChangeAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    REPUBLISHED = "republished"
    UNPUBLISHED = "unpublished"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass
class PostChange:
    """What a pass did for one source item."""

    source_id: str
    action: ChangeAction
    post_id: str | None = None
    title: str | None = None
    error: str | None = None


@dataclass
class SyncResult:
    """
    Outcome of one sync pass.

    `failed` marks a pass whose failure ratio crossed the threshold; items
    that succeeded are persisted regardless. `skipped` marks a pass that
    found no account changes and fetched nothing.
    """

    created: int = 0
    updated: int = 0
    unpublished: int = 0
    republished: int = 0
    notes_found: int = 0
    failures: int = 0
    errors: list[str] = field(default_factory=list)
    failed: bool = False
    full_sync: bool = False
    skipped: bool = False
    retry_after_seconds: float | None = None
    posts: list[PostChange] = field(default_factory=list)

    def record(self, change: PostChange) -> None:
        """Append `change` and bump the matching counter."""
        self.posts.append(change)
        if change.action == ChangeAction.CREATED:
            self.created += 1
        elif change.action == ChangeAction.UPDATED:
            self.updated += 1
        elif change.action == ChangeAction.REPUBLISHED:
            self.republished += 1
        elif change.action == ChangeAction.UNPUBLISHED:
            self.unpublished += 1
        elif change.action == ChangeAction.FAILED:
            self.failures += 1
            if change.error:
                self.errors.append(change.error)

    def failure_ratio(self) -> float:
        if self.notes_found == 0:
            return 0.0
        return self.failures / self.notes_found

    def summary(self) -> dict[str, object]:
        return {
            "created": self.created,
            "updated": self.updated,
            "unpublished": self.unpublished,
            "republished": self.republished,
            "notes_found": self.notes_found,
            "failures": self.failures,
            "failed": self.failed,
            "full_sync": self.full_sync,
            "skipped": self.skipped,
        }


@dataclass
class OwnerSyncResult:
    """
    Outcome of syncing every notebook-linked blog of one owner.

    A blog whose pass raised appears in `errors` instead of `results`.
    `error` is set when the owner could not be synced at all.
    """

    owner_id: str
    results: dict[str, SyncResult] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.errors and not any(
            result.failed for result in self.results.values()
        )

    def totals(self) -> dict[str, int]:
        keys = ("created", "updated", "unpublished", "republished", "failures")
        return {key: sum(getattr(r, key) for r in self.results.values()) for key in keys}

    def summary(self) -> dict[str, object]:
        return {
            "owner_id": self.owner_id,
            "blogs_synced": len(self.results),
            "blogs_errored": len(self.errors),
            "succeeded": self.succeeded,
            **self.totals(),
        }

"""Per-record results and the end-of-run tally."""

from __future__ import annotations

from pydantic import BaseModel, Field

from typecho_migrator.statuses import SyncAction
from typecho_migrator.utils.db import now_iso


class RecordResult(BaseModel):
    """Outcome of one record.

    Attributes:
        key: Natural key (slug, normalized URL, ``coid``).
        title: Human label for the record.
        action: What reconciliation decided.
        success: False when the adapter call raised.
        remote_id: Destination id after the write, if known.
        error: Failure message, or the reason a record was skipped.
    """

    key: str
    title: str
    action: SyncAction
    success: bool = True
    remote_id: str | None = None
    error: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Accumulates results for one destination run."""

    name: str
    dry_run: bool = False
    results: list[RecordResult] = Field(default_factory=list)
    started_at: str = Field(default_factory=now_iso)
    completed_at: str | None = None

    def add(self, result: RecordResult) -> None:
        self.results.append(result)

    def finish(self) -> SyncReport:
        self.completed_at = now_iso()
        return self

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def created(self) -> list[RecordResult]:
        return [r for r in self.results if r.success and r.action == SyncAction.CREATE]

    @property
    def updated(self) -> list[RecordResult]:
        return [r for r in self.results if r.success and r.action == SyncAction.UPDATE]

    @property
    def skipped(self) -> list[RecordResult]:
        return [r for r in self.results if r.success and r.action == SyncAction.SKIP]

    @property
    def failed(self) -> list[RecordResult]:
        return [r for r in self.results if not r.success]

    def summary(self) -> str:
        """Multi-line tally followed by every failure reason."""
        lines = [
            f"{self.name}" + (" (dry run)" if self.dry_run else ""),
            f"  Total:    {self.total}",
            f"  Created:  {len(self.created)}",
            f"  Updated:  {len(self.updated)}",
            f"  Skipped:  {len(self.skipped)}",
            f"  Failed:   {len(self.failed)}",
        ]
        if self.failed:
            lines.append("  Errors:")
            lines.extend(f"    - {r.title}: {r.error}" for r in self.failed)
        return "\n".join(lines)


class ExportSummary(BaseModel):
    """Counts for a one-shot file export (no reconciliation)."""

    name: str
    out: str
    written: dict[str, int] = Field(default_factory=dict)
    dropped: int = 0

    def summary(self) -> str:
        lines = [f"{self.name} -> {self.out}"]
        lines.extend(f"  {label.capitalize() + ':':<12}{count}" for label, count in self.written.items())
        if self.dropped:
            lines.append(f"  {'Dropped:':<12}{self.dropped}")
        return "\n".join(lines)

"""Per-run summary of processed, skipped and failed files, as text or JSON."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Optional

from modmapper.diff.engine import FAILED, PROCESSED, SKIPPED, PluginOutcome, UpsertStats


@dataclass
class FileOutcome:
    """What happened to one downloadable file and the plugins inside it."""
    nexus_mod_id: int
    nexus_file_id: int
    name: str
    file_id: Optional[int] = None
    plugins: list[PluginOutcome] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def status(self) -> str:
        """Failed if anything failed; skipped only if every plugin was unchanged."""
        if self.reason is not None or any(p.status == FAILED for p in self.plugins):
            return FAILED
        if self.plugins and all(p.status == SKIPPED for p in self.plugins):
            return SKIPPED
        return PROCESSED

    @property
    def failure_reason(self) -> Optional[str]:
        if self.reason is not None:
            return self.reason
        reasons = [f"{p.path}: {p.reason}" for p in self.plugins if p.status == FAILED]
        return "; ".join(reasons) or None

    def to_dict(self) -> dict:
        return {
            "nexus_mod_id": self.nexus_mod_id,
            "nexus_file_id": self.nexus_file_id,
            "name": self.name,
            "status": self.status,
            "reason": self.failure_reason,
            "plugins": [
                {"path": p.path, "status": p.status, "reason": p.reason,
                 "skipped_records": p.skipped_records}
                for p in self.plugins
            ],
        }


@dataclass
class RunSummary:
    mode: str
    started_at: str
    finished_at: Optional[str] = None
    mods_checked: int = 0
    mods_refreshed: int = 0
    files: list[FileOutcome] = field(default_factory=list)
    stats: UpsertStats = field(default_factory=UpsertStats)
    backfill: Optional[UpsertStats] = None

    def add_file(self, outcome: FileOutcome) -> None:
        self.files.append(outcome)
        for plugin in outcome.plugins:
            self.stats.merge(plugin.stats)

    def _by_status(self, status: str) -> list[FileOutcome]:
        return [f for f in self.files if f.status == status]

    @property
    def files_processed(self) -> list[FileOutcome]:
        return self._by_status(PROCESSED)

    @property
    def files_skipped(self) -> list[FileOutcome]:
        return self._by_status(SKIPPED)

    @property
    def files_failed(self) -> list[FileOutcome]:
        return self._by_status(FAILED)

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "mods_checked": self.mods_checked,
            "mods_refreshed": self.mods_refreshed,
            "files_processed": len(self.files_processed),
            "files_skipped": len(self.files_skipped),
            "files_failed": [
                {"nexus_mod_id": f.nexus_mod_id, "nexus_file_id": f.nexus_file_id,
                 "name": f.name, "reason": f.failure_reason}
                for f in self.files_failed
            ],
            "rows": self.stats.to_dict(),
            "backfill": self.backfill.to_dict() if self.backfill else None,
            "files": [f.to_dict() for f in self.files],
        }


def format_summary(summary: RunSummary, fmt: str = "text") -> str:
    """Format a run summary in the specified format."""
    if fmt == "json":
        return json.dumps(summary.to_dict(), indent=2)

    lines = [
        f"Run ({summary.mode}) started {summary.started_at}",
        f"  Mods checked:    {summary.mods_checked:,}",
        f"  Mods refreshed:  {summary.mods_refreshed:,}",
        f"  Files processed: {len(summary.files_processed):,}",
        f"  Files skipped:   {len(summary.files_skipped):,} (unchanged)",
        f"  Files failed:    {len(summary.files_failed):,}",
    ]
    if summary.backfill is not None:
        lines.append("")
        lines.append("Base game backfill:")
        lines.extend(_format_stats(summary.backfill))
    if summary.stats.counts:
        lines.append("")
        lines.append("Rows:")
        lines.extend(_format_stats(summary.stats))
    if summary.files_failed:
        lines.append("")
        lines.append("Failures:")
        for f in summary.files_failed:
            lines.append(f"  mod {f.nexus_mod_id} file {f.nexus_file_id} ({f.name}): "
                         f"{f.failure_reason}")
    return "\n".join(lines)


def _format_stats(stats: UpsertStats) -> list[str]:
    lines = [f"  {'Entity':<14} {'Inserted':>9} {'Updated':>9} {'Unchanged':>10}"]
    for entity, actions in stats.to_dict().items():
        lines.append(f"  {entity:<14} {actions['inserted']:>9,} {actions['updated']:>9,} "
                     f"{actions['unchanged']:>10,}")
    return lines

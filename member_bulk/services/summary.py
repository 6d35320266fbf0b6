from __future__ import annotations

from collections.abc import Sequence

from ..models.bulk_result import BulkResult

"""SUMMARY line rendering for the CLI.

Format:
    SUMMARY files={ok}/{total} failed={failed} rows={rows} added={added}
    updated={updated} rejected={rejected} dry_run={true|false} elapsed_sec={elapsed}

`ok` counts files that produced a BulkResult (with or without rejections);
`failed` counts files aborted by a batch-level error.
"""

__all__ = [
    "format_seconds",
    "render_summary_line",
]


def format_seconds(value: float) -> str:
    """Render elapsed seconds without scientific notation or trailing zeros."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(
    results: Sequence[BulkResult],
    failed_files: int = 0,
    *,
    dry_run: bool = False,
) -> str:
    """Aggregate per-file results into one SUMMARY line.

    Examples:
        >>> render_summary_line([], failed_files=1)
        'SUMMARY files=0/1 failed=1 rows=0 added=0 updated=0 rejected=0 dry_run=false elapsed_sec=0'
    """
    total_files = len(results) + failed_files
    rows = sum(r.total_rows for r in results)
    added = sum(r.added for r in results)
    updated = sum(r.updated for r in results)
    rejected = sum(r.error_count for r in results)
    elapsed = sum(r.elapsed_seconds for r in results)
    return (
        f"SUMMARY files={len(results)}/{total_files} "
        f"failed={failed_files} "
        f"rows={rows} "
        f"added={added} "
        f"updated={updated} "
        f"rejected={rejected} "
        f"dry_run={'true' if dry_run else 'false'} "
        f"elapsed_sec={format_seconds(elapsed)}"
    )

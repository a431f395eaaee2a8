"""Tabular summaries and console rendering"""

from .summary import (
    cluster_size_table,
    unassigned_reason_table,
    merge_audit_table,
    contrast_table,
    render_table,
    render_run_summary,
)

__all__ = [
    "cluster_size_table",
    "unassigned_reason_table",
    "merge_audit_table",
    "contrast_table",
    "render_table",
    "render_run_summary",
]

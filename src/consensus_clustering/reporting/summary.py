"""Human-readable summaries of partitions, merge decisions and contrasts"""
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd
from rich.console import Console
from rich.table import Table

from ..modeling.consensus import ConsensusPartition
from ..modeling.contrasts import ContrastReport
from ..modeling.merging import MergeResult
from ..modeling.sweep import SweepResult


def cluster_size_table(partition: Union[ConsensusPartition, Sequence[int], np.ndarray]) -> pd.DataFrame:
    """
    Samples per label, unassigned (-1) last

    For a ConsensusPartition the -1 row is split into one row per reason tag.
    """
    if isinstance(partition, ConsensusPartition):
        labels = np.asarray(partition.labels)
        reasons = np.array([r.value for r in partition.reasons], dtype=object)
    else:
        labels = np.asarray(partition)
        reasons = None

    rows = []
    for c in np.unique(labels[labels >= 0]):
        rows.append({'label': int(c), 'reason': 'assigned', 'n_samples': int((labels == c).sum())})
    unassigned = labels < 0
    if unassigned.any():
        if reasons is None:
            rows.append({'label': -1, 'reason': 'unassigned', 'n_samples': int(unassigned.sum())})
        else:
            for reason in sorted(set(reasons[unassigned])):
                n = int((unassigned & (reasons == reason)).sum())
                rows.append({'label': -1, 'reason': reason, 'n_samples': n})

    df = pd.DataFrame(rows, columns=['label', 'reason', 'n_samples'])
    df['fraction'] = df['n_samples'] / max(len(labels), 1)
    return df


def unassigned_reason_table(partition: ConsensusPartition) -> pd.DataFrame:
    """Samples per reason tag"""
    reasons = pd.Series([r.value for r in partition.reasons], name='reason')
    counts = reasons.value_counts().rename_axis('reason').reset_index(name='n_samples')
    return counts.sort_values('reason').reset_index(drop=True)


def merge_audit_table(result: MergeResult) -> pd.DataFrame:
    return result.decision_table()


def contrast_table(report: ContrastReport) -> pd.DataFrame:
    """One row per contrast: groups, status and best feature"""
    rows = []
    for r in report.results:
        best = r.table.iloc[0] if not r.failed and len(r.table) else None
        rows.append({
            'contrast': r.contrast.name,
            'group1': list(r.contrast.group1),
            'group2': list(r.contrast.group2),
            'n_features': 0 if r.failed else len(r.table),
            'top_feature': None if best is None else best['feature'],
            'top_adj_p_value': np.nan if best is None else float(best['adj_p_value']),
            'failed': r.failed,
            'message': r.message,
        })
    return pd.DataFrame(rows)


def render_table(df: pd.DataFrame, title: str, console: Optional[Console] = None, max_rows: int = 30) -> None:
    """Print a DataFrame as a rich table"""
    console = console or Console()

    table = Table(title=title, show_header=True)
    for i, col in enumerate(df.columns):
        table.add_column(str(col), style="cyan" if i == 0 else "white")

    for _, row in df.head(max_rows).iterrows():
        table.add_row(*[_format(v) for v in row])

    console.print(table)
    if len(df) > max_rows:
        console.print(f"[dim]… {len(df) - max_rows} more rows[/dim]")


def render_run_summary(
    sweep: Optional[SweepResult] = None,
    consensus: Optional[ConsensusPartition] = None,
    merge: Optional[MergeResult] = None,
    contrasts: Optional[ContrastReport] = None,
    console: Optional[Console] = None,
) -> None:
    """Stage-by-stage overview of a pipeline run"""
    console = console or Console()

    table = Table(title="Pipeline Results", show_header=True)
    table.add_column("Stage", style="cyan")
    table.add_column("Status", style="white")
    table.add_column("Details", style="white")

    if sweep is not None:
        status = "[green]✓[/green]" if sweep.n_failed == 0 else "[yellow]![/yellow]"
        table.add_row(
            "sweep", status,
            f"{sweep.label_matrix.n_labelings} labelings, {sweep.n_failed} failed",
        )
    if consensus is not None:
        status = "[green]✓[/green]" if consensus.n_clusters > 1 else "[yellow]![/yellow]"
        table.add_row(
            "consensus", status,
            f"{consensus.n_clusters} clusters, {consensus.n_unassigned} unassigned",
        )
    if merge is not None:
        mode = " (preview)" if merge.preview else ""
        table.add_row(
            "merge", "[green]✓[/green]",
            f"{merge.n_merged}/{len(merge.decisions)} nodes merged{mode}, "
            f"{merge.n_clusters} final clusters",
        )
    if contrasts is not None:
        n_failed = len(contrasts.failed)
        status = "[green]✓[/green]" if n_failed == 0 else "[yellow]![/yellow]"
        table.add_row(
            "contrasts", status,
            f"{len(contrasts.results)} {contrasts.contrast_type} contrasts, {n_failed} failed",
        )

    console.print(table)


def _format(value) -> str:
    if isinstance(value, float):
        if np.isnan(value):
            return "-"
        return f"{value:.4g}"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)

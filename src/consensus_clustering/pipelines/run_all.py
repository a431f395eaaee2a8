"""
Stage runners driven by a config file - thin, readable, delegates to modules
"""
from pathlib import Path
from typing import Optional, Union

import pandas as pd
from rich.console import Console

from ..config import load_config as load_validated_config, AppConfig, ConfigHash
from ..pipeline import Pipeline, PipelineResult
from ..reporting import cluster_size_table, render_table, render_run_summary
from ..utils.io import save_data

console = Console()

STEPS = ["sweep", "consensus", "merge", "contrasts"]


def _cfg(path: str) -> AppConfig:
    """Load and validate config (internal helper)"""
    return load_validated_config(path)


def _pipeline(cfg_path: str) -> Pipeline:
    cfg = _cfg(cfg_path)
    pipeline = Pipeline(config=cfg)
    matrix = pipeline.matrix
    console.print(
        f"  [green]✓[/green] Matrix loaded: {matrix.n_samples} samples x "
        f"{matrix.n_features} features" + (" (counts)" if matrix.is_count else "")
    )
    return pipeline


def _output_dir(cfg: AppConfig) -> Path:
    output_dir = Path(cfg.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


def sweep(cfg_path: str) -> None:
    """
    Run the parameter sweep and write the label matrix
    """
    console.print("[bold]→ sweep[/bold]")
    pipeline = _pipeline(cfg_path)

    result = pipeline.sweep()
    console.print(
        f"  [green]✓[/green] {result.label_matrix.n_labelings} labelings "
        f"({result.n_failed} failed combinations)"
    )

    output_dir = _output_dir(pipeline.config)
    write_sweep(result, pipeline.matrix.sample_ids, output_dir)
    console.print(f"  [green]✓[/green] Label matrix saved to {output_dir}")


def consensus(cfg_path: str) -> None:
    """
    Sweep + co-clustering consensus
    """
    console.print("[bold]→ consensus[/bold]")
    pipeline = _pipeline(cfg_path)

    partition = pipeline.consensus()
    console.print(
        f"  [green]✓[/green] Consensus: {partition.n_clusters} clusters, "
        f"{partition.n_unassigned} unassigned"
    )
    render_table(cluster_size_table(partition), title="Consensus Clusters", console=console)

    output_dir = _output_dir(pipeline.config)
    write_sweep(pipeline.sweep(), pipeline.matrix.sample_ids, output_dir)
    save_data(partition.to_dataframe(pipeline.matrix.sample_ids), output_dir / "consensus.csv",
              index_label="sample_id")
    console.print("  [green]✓[/green] Consensus saved")


def merge(cfg_path: str, preview: bool = False) -> None:
    """
    Sweep + consensus + hierarchy + merging (preview computes decisions only)
    """
    console.print("[bold]→ merge[/bold]" + (" [dim](preview)[/dim]" if preview else ""))
    pipeline = _pipeline(cfg_path)

    result = pipeline.merge(preview=preview)
    console.print(
        f"  [green]✓[/green] {result.n_merged}/{len(result.decisions)} nodes merged, "
        f"{result.n_clusters} final clusters"
    )
    render_table(result.decision_table().drop(columns=["message"]), title="Merge Decisions", console=console)

    output_dir = _output_dir(pipeline.config)
    save_data(result.decision_table(), output_dir / "merge_decisions.csv", index=False)
    if not preview:
        save_data(
            final_partition_frame(result, pipeline.matrix.sample_ids),
            output_dir / "final_partition.csv",
            index_label="sample_id",
        )
    console.print("  [green]✓[/green] Merge decisions saved")


def contrasts(cfg_path: str, contrast_type: Optional[str] = None) -> None:
    """
    Full pipeline up to ranked contrast tables
    """
    console.print("[bold]→ contrasts[/bold]")
    pipeline = _pipeline(cfg_path)

    report = pipeline.contrasts(contrast_type)
    console.print(
        f"  [green]✓[/green] {len(report.results)} {report.contrast_type} contrasts "
        f"({len(report.failed)} failed)"
    )

    output_dir = _output_dir(pipeline.config)
    write_contrasts(report, output_dir)
    console.print(f"  [green]✓[/green] Contrast tables saved to {output_dir / 'contrasts'}")


def pipeline(cfg_path: str) -> PipelineResult:
    """
    Run the complete pipeline and write every output
    """
    console.print(f"\n[bold]Pipeline: {', '.join(STEPS)}[/bold]")
    console.print(f"[dim]Config: {cfg_path}[/dim]\n")

    runner = _pipeline(cfg_path)
    result = runner.run()
    output_dir = write_outputs(result, runner.config.output_dir)

    render_run_summary(result.sweep, result.consensus, result.merge, result.contrasts, console=console)
    console.print(f"\n[bold cyan]Outputs saved to:[/bold cyan] {output_dir}")
    console.print(f"[dim]Config hash: {result.config_hash.short}[/dim]")
    console.print("\n[bold green]Pipeline complete ✓[/bold green]\n")
    return result


# ----------------------------------------------------------------------
# Persistence
# ----------------------------------------------------------------------

def final_partition_frame(result, sample_ids) -> pd.DataFrame:
    """Consensus and final label side by side, one row per sample"""
    return pd.DataFrame(
        {
            "consensus_label": result.consensus_labels,
            "final_label": result.labels,
        },
        index=list(sample_ids),
    )


def write_sweep(result, sample_ids, output_dir: Path) -> None:
    save_data(result.label_matrix.to_dataframe(sample_ids), output_dir / "label_matrix.csv",
              index_label="sample_id")
    if result.n_failed:
        save_data(result.summary(), output_dir / "sweep_summary.csv", index=False)


def write_contrasts(report, output_dir: Path) -> None:
    contrast_dir = output_dir / "contrasts"
    for r in report.results:
        if r.failed:
            continue
        save_data(r.table, contrast_dir / f"{r.contrast.name}.csv", index=False)


def write_outputs(result: PipelineResult, output_dir: Union[str, Path]) -> Path:
    """
    Write every artifact of a run

    Files:
        label_matrix.csv       samples x labelings
        consensus.csv          consensus label, reason tag and confidence per sample
        final_partition.csv    consensus and final label per sample
        merge_decisions.csv    ordered merge audit trail
        contrasts/<name>.csv   ranked feature table per successful contrast
        config_lock.json       config and its SHA-256 hash
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    sample_ids = result.matrix.sample_ids

    write_sweep(result.sweep, sample_ids, output_dir)
    save_data(result.consensus.to_dataframe(sample_ids), output_dir / "consensus.csv",
              index_label="sample_id")
    save_data(final_partition_frame(result.merge, sample_ids), output_dir / "final_partition.csv",
              index_label="sample_id")
    save_data(result.merge.decision_table(), output_dir / "merge_decisions.csv", index=False)
    if result.contrasts is not None:
        write_contrasts(result.contrasts, output_dir)

    result.config_hash.save_lockfile(output_dir / "config_lock.json")
    return output_dir


def verify_lockfile(cfg_path: str, lockfile: Union[str, Path]) -> bool:
    """True if the config at cfg_path is the one recorded in lockfile"""
    cfg = load_validated_config(cfg_path, quiet=True)
    return ConfigHash.load_lockfile(lockfile).verify_match(cfg.model_dump(mode="json"))

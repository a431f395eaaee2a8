"""
Command-line interface for the consensus clustering pipeline
"""
import typer
from pathlib import Path
from rich.console import Console
from rich.table import Table
from typing import Optional

app = typer.Typer(
    name="consensus-clustering",
    help="Ensemble clustering, co-clustering consensus and hierarchical merging",
    no_args_is_help=True,
    add_completion=False,
)
console = Console()


@app.command()
def run(
    cfg: str = typer.Argument("config.yaml", help="Config file path"),
):
    """Sweep, consensus, merging and contrasts; writes every output."""
    from .pipelines import run_all

    console.print("[bold cyan]→ Running pipeline[/bold cyan]")
    console.print(f"Config: {cfg}")

    try:
        run_all.pipeline(cfg)
        console.print("[bold green]✓ Pipeline completed[/bold green]")
    except Exception as e:
        console.print(f"[bold red]✗ Pipeline failed: {e}[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def sweep(
    cfg: str = typer.Argument("config.yaml", help="Config file path"),
):
    """Cluster once per parameter combination and save the label matrix."""
    from .pipelines import run_all

    console.print("[bold cyan]→ Parameter sweep[/bold cyan]")
    console.print(f"Config: {cfg}")

    try:
        run_all.sweep(cfg)
        console.print("[bold green]✓ Sweep completed[/bold green]")
    except Exception as e:
        console.print(f"[bold red]✗ Sweep failed: {e}[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def consensus(
    cfg: str = typer.Argument("config.yaml", help="Config file path"),
):
    """Co-clustering consensus partition."""
    from .pipelines import run_all

    console.print("[bold cyan]→ Consensus clustering[/bold cyan]")
    console.print(f"Config: {cfg}")

    try:
        run_all.consensus(cfg)
        console.print("[bold green]✓ Consensus completed[/bold green]")
    except Exception as e:
        console.print(f"[bold red]✗ Consensus failed: {e}[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def merge(
    cfg: str = typer.Argument("config.yaml", help="Config file path"),
    preview: bool = typer.Option(
        False,
        "--preview",
        help="Compute merge decisions without applying them",
    ),
):
    """Bottom-up hierarchical merging of consensus clusters."""
    from .pipelines import run_all

    console.print("[bold cyan]→ Hierarchical merging[/bold cyan]")
    console.print(f"Config: {cfg}")

    try:
        run_all.merge(cfg, preview=preview)
        console.print("[bold green]✓ Merging completed[/bold green]")
    except Exception as e:
        console.print(f"[bold red]✗ Merging failed: {e}[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def contrasts(
    cfg: str = typer.Argument("config.yaml", help="Config file path"),
    contrast_type: Optional[str] = typer.Option(
        None,
        "--type", "-t",
        help="F, Pairs, OneAgainstAll or Dendro (default: from config)",
    ),
):
    """Ranked feature tables per contrast of the final clusters."""
    from .pipelines import run_all

    console.print("[bold cyan]→ Contrasts[/bold cyan]")
    console.print(f"Config: {cfg}")

    try:
        run_all.contrasts(cfg, contrast_type=contrast_type)
        console.print("[bold green]✓ Contrasts completed[/bold green]")
    except Exception as e:
        console.print(f"[bold red]✗ Contrasts failed: {e}[/bold red]")
        raise typer.Exit(code=1)


@app.command("show-config")
def show_config(
    cfg: Path = typer.Argument(..., help="Config file path"),
):
    """Validate a config file and print its settings."""
    from .config import load_config

    try:
        config = load_config(cfg, quiet=True)
    except Exception as e:
        console.print(f"[bold red]✗ Invalid config: {e}[/bold red]")
        raise typer.Exit(code=1)

    table = Table(title="Configuration Summary", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Seed", str(config.seed))
    table.add_row("Counts input", str(config.is_count))
    table.add_row("Input", str(config.input_path))
    table.add_row("Output dir", str(config.output_dir))
    table.add_row("Strategy", config.sweep.strategy)
    table.add_row("k values", ", ".join(str(k) for k in config.sweep.ks))
    table.add_row("Reductions", ", ".join(config.sweep.reduce_methods))
    table.add_row("Combine proportion", str(config.consensus.combine_proportion))
    table.add_row("Combine min size", str(config.consensus.combine_min_size))
    table.add_row("Hierarchy dims", f"{config.hierarchy.reduce_method} / {config.hierarchy.n_dims}")
    table.add_row("Merge cutoff", f"{config.merge.cutoff} ({config.merge.method}, {config.merge.correction})")
    table.add_row("Contrasts", f"{config.contrasts.contrast_type} (top {config.contrasts.number})")

    console.print(table)


if __name__ == "__main__":
    app()

"""
YAML config loading with Hydra-style defaults and pydantic validation
"""
from pathlib import Path
from typing import Union
import yaml
from rich.console import Console

from .schema import AppConfig

console = Console()


def load_yaml(path: Union[str, Path]) -> dict:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def load_config(config_path: Union[str, Path], quiet: bool = False) -> AppConfig:
    """
    Load and validate a run configuration

    Args:
        config_path: YAML file; a top-level ``defaults`` list pulls section
            files from next to it (see merge_defaults)
        quiet: Suppress console output

    Returns:
        Validated AppConfig

    Raises:
        FileNotFoundError: config (not a defaults entry) is missing
        pydantic.ValidationError: unknown keys or out-of-range values
    """
    config_path = Path(config_path)
    if not quiet:
        console.print(f"[dim]Loading config: {config_path}[/dim]")

    raw = load_yaml(config_path)
    defaults = raw.pop("defaults", None)
    if defaults:
        raw = merge_defaults(config_path.parent, defaults, raw)

    try:
        config = AppConfig.model_validate(raw)
    except Exception as e:
        if not quiet:
            console.print(f"[red]✗ Config validation failed:[/red] {e}")
        raise

    if not quiet:
        console.print(
            f"[green]✓[/green] Config validated: {config.sweep.strategy} sweep, "
            f"merge cutoff {config.merge.cutoff} ({config.merge.method})"
        )
    return config


def merge_defaults(config_dir: Path, defaults: list, base_config: dict) -> dict:
    """
    Merge Hydra-style defaults under a base config

    Each entry is either ``"section: name"`` / ``{"section": "name"}`` (loads
    ``<config_dir>/<section>/<name>.yaml`` into that section) or a bare file stem
    (merged at the top level). Missing default files are skipped. Keys of the
    base config win, section by section.
    """
    merged: dict = {}

    for default in defaults:
        if isinstance(default, dict):
            entries = [(section, config_dir / section / f"{name}.yaml") for section, name in default.items()]
        elif ":" in str(default):
            section, name = (part.strip() for part in str(default).split(":", 1))
            entries = [(section, config_dir / section / f"{name}.yaml")]
        else:
            entries = [(None, config_dir / f"{default}.yaml")]

        for section, path in entries:
            if not path.exists():
                continue
            values = load_yaml(path)
            if section is None:
                merged.update(values)
            else:
                merged.setdefault(section, {}).update(values)

    for key, value in base_config.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def save_config(config: AppConfig, path: Union[str, Path]) -> None:
    """Write a config back to YAML using the documented option names"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(config.model_dump(mode="json", by_alias=True), f, default_flow_style=False, sort_keys=False)
    console.print(f"[green]✓[/green] Config saved: {path}")

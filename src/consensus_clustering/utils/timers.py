"""Stage timing"""
import logging
import time
from typing import Any

from rich.console import Console

console = Console()
logger = logging.getLogger(__name__)


class Timer:
    """
    Context manager timing one pipeline stage

    The elapsed time is always logged at DEBUG; with verbose=True it is also
    printed to the console.
    """

    def __init__(self, name: str = "Stage", verbose: bool = True):
        self.name = name
        self.verbose = verbose
        self.elapsed: float = 0.0
        self._start: float = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.elapsed = time.perf_counter() - self._start
        logger.debug(f"{self.name} took {self.elapsed:.3f}s")
        if self.verbose:
            console.print(f"  [cyan]{self.name}[/cyan] [dim]{self.elapsed:.2f}s[/dim]")

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
import math
from pathlib import Path
from typing import Iterable

from .errors import ConfigurationError

PNG_SUFFIX = ".png"


class Outcome(Enum):
    IMPROVED = "improved"
    NO_GAIN = "no_gain"
    CORRUPTED = "corrupted"
    INVALID = "invalid"


class TaskState(Enum):
    INIT = "init"
    RUNNING = "running"
    CONVERGED = "converged"
    ABORTED = "aborted"


class TaskStatus(Enum):
    CONVERGED = "converged"
    ABORTED = "aborted"


@dataclass(frozen=True)
class Engine:
    """A resolved external engine.

    ``command`` is the executable (plus any fixed leading arguments). Every entry
    of ``passes`` is one invocation; ``{source}`` and ``{working}`` are replaced
    by the canonical file and the working copy.
    """

    name: str
    command: tuple[str, ...]
    passes: tuple[tuple[str, ...], ...]
    version_args: tuple[str, ...] = ("--version",)
    fresh_copy: bool = False


@dataclass(frozen=True)
class EngineResult:
    engine: str
    succeeded: bool
    returncode: int | None = None
    detail: str = ""


@dataclass(frozen=True)
class OptimizeOptions:
    engines: tuple[Engine, ...]
    jobs: int = 0
    threshold: int = 1
    timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.engines:
            raise ConfigurationError("at least one engine is required")
        if self.jobs < 0:
            raise ConfigurationError(f"jobs must be >= 0, got {self.jobs}")
        if self.threshold < 1:
            raise ConfigurationError(f"threshold must be >= 1, got {self.threshold}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")


@dataclass(frozen=True)
class TaskReport:
    path: Path
    original_size: int
    final_size: int
    iterations: int
    status: TaskStatus
    message: str = ""
    outcomes: Counter[Outcome] = field(default_factory=Counter)
    engine_failures: int = 0

    @property
    def delta(self) -> int:
        return self.final_size - self.original_size

    @property
    def percent(self) -> float:
        return percent_change(self.original_size, self.final_size)

    @property
    def aborted(self) -> bool:
        return self.status is TaskStatus.ABORTED


@dataclass(frozen=True)
class RunReport:
    tasks: list[TaskReport]

    @property
    def total_before(self) -> int:
        return sum(task.original_size for task in self.tasks)

    @property
    def total_after(self) -> int:
        return sum(task.final_size for task in self.tasks)

    @property
    def delta(self) -> int:
        return self.total_after - self.total_before

    @property
    def percent(self) -> float:
        return percent_change(self.total_before, self.total_after)

    @property
    def aborted(self) -> list[TaskReport]:
        return [task for task in self.tasks if task.aborted]


def percent_change(before: int, after: int, digits: int = 2) -> float:
    if not before:
        return 0.0
    scale = 10**digits
    return math.trunc((after - before) * 100 * scale / before) / scale


def format_size(size: int) -> str:
    sign = "-" if size < 0 else ""
    value = float(abs(size))
    if value < 1024:
        return f"{sign}{int(value)} B"
    unit = "KiB"
    for unit in ("KiB", "MiB", "GiB"):
        value /= 1024
        if value < 1024:
            break
    return f"{sign}{value:.2f} {unit}"


def is_png(path: Path) -> bool:
    return path.suffix == PNG_SUFFIX


def iter_png_files(root: Path) -> list[Path]:
    files = []
    for path in root.rglob("*"):
        if path.is_file() and is_png(path):
            files.append(path)
    return files


def collect_png_files(paths: Iterable[Path]) -> list[Path]:
    files: list[Path] = []
    for path in paths:
        if path.is_dir():
            files.extend(iter_png_files(path))
        elif path.is_file() and is_png(path):
            files.append(path)
    # Different spellings of one file (relative, absolute, via a symlink) become one task.
    unique: dict[Path, Path] = {}
    for file in files:
        unique.setdefault(file.resolve(), file)
    return sorted(unique.values())

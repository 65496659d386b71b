from __future__ import annotations

from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
import shutil
from typing import Iterator

from loguru import logger
from .engines import run_engine
from .errors import OptimizationError, WorkingCopyConflictError
from .models import Engine, OptimizeOptions, Outcome, TaskReport, TaskState, TaskStatus
from .verify import Snapshot, load_baseline, settle, verify

WORKING_SUFFIX = "_tmp"


def working_copy_path(path: Path) -> Path:
    return path.with_name(f"{path.stem}{WORKING_SUFFIX}.png")


@dataclass
class OptimizationTask:
    """State of one file; owned by a single worker for its whole lifetime."""

    path: Path
    working_copy_path: Path
    original_size: int
    last_iteration_size: int
    iteration_count: int = 0
    state: TaskState = TaskState.INIT
    outcomes: Counter[Outcome] = field(default_factory=Counter)
    engine_failures: int = 0
    baseline: Snapshot | None = None

    @classmethod
    def create(cls, path: Path) -> OptimizationTask:
        size = path.stat().st_size
        return cls(
            path=path,
            working_copy_path=working_copy_path(path),
            original_size=size,
            last_iteration_size=size,
        )

    def current_size(self) -> int:
        return self.path.stat().st_size

    def report(self, message: str = "") -> TaskReport:
        status = TaskStatus.CONVERGED if self.state is TaskState.CONVERGED else TaskStatus.ABORTED
        final_size = self.current_size() if self.path.exists() else self.last_iteration_size
        return TaskReport(
            path=self.path,
            original_size=self.original_size,
            final_size=final_size,
            iterations=self.iteration_count,
            status=status,
            message=message,
            outcomes=Counter(self.outcomes),
            engine_failures=self.engine_failures,
        )


def optimize_file(path: Path, options: OptimizeOptions) -> TaskReport:
    """Run the engine pipeline over one file until an iteration stops paying off.

    Per-task errors are logged and turned into an aborted report so the caller
    never has to stop other files because of this one.
    """
    try:
        task = OptimizationTask.create(path)
    except OSError as error:
        logger.error("{}: cannot read: {}", path, error)
        return TaskReport(path, 0, 0, 0, TaskStatus.ABORTED, str(error))
    try:
        run_task(task, options)
    except (OptimizationError, OSError) as error:
        task.state = TaskState.ABORTED
        logger.error("{}: aborted after {} iteration(s): {}", path, task.iteration_count, error)
        return task.report(str(error))
    return task.report()


def run_task(task: OptimizationTask, options: OptimizeOptions) -> None:
    with working_copy(task):
        task.state = TaskState.RUNNING
        if task.path.stat().st_nlink > 1:
            logger.warning("{}: other hard links to this file keep its original contents", task.path)
        task.baseline = load_baseline(task.path)
        while True:
            before = task.current_size()
            for engine in options.engines:
                run_step(task, engine, options.timeout)
            after = task.current_size()
            task.iteration_count += 1
            task.last_iteration_size = after
            logger.debug("{}: iteration {} {} -> {} bytes", task.path, task.iteration_count, before, after)
            if before - after < options.threshold:
                break
        task.baseline = None
    task.state = TaskState.CONVERGED


def run_step(task: OptimizationTask, engine: Engine, timeout: float | None) -> Outcome:
    result = run_engine(engine, task.path, task.working_copy_path, timeout)
    if not result.succeeded:
        task.engine_failures += 1
        logger.warning("{}: {} failed: {}", task.path, engine.name, result.detail or "no details")
    # Verification runs even after a failed engine, against whatever it left behind.
    verification = verify(task.baseline, task.path, task.working_copy_path)
    task.outcomes[verification.outcome] += 1
    settle(verification, engine.name, task.path, task.working_copy_path)
    if verification.outcome is Outcome.IMPROVED:
        task.baseline = verification.candidate
    return verification.outcome


@contextmanager
def working_copy(task: OptimizationTask) -> Iterator[Path]:
    """Create the working copy exclusively and remove it when the task ends.

    A working copy that already exists belongs to someone else, possibly another
    task for the same file, and is left untouched.
    """
    try:
        writer = task.working_copy_path.open("xb")
    except FileExistsError as error:
        raise WorkingCopyConflictError(task.working_copy_path) from error
    try:
        with writer, task.path.open("rb") as reader:
            shutil.copyfileobj(reader, writer)
        yield task.working_copy_path
    finally:
        task.working_copy_path.unlink(missing_ok=True)

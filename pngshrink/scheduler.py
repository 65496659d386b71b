from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
import os
from pathlib import Path
from typing import Callable, Iterable

from loguru import logger

from .models import OptimizeOptions, RunReport, TaskReport
from .optimize import optimize_file


def worker_count(options: OptimizeOptions) -> int:
    return options.jobs or os.cpu_count() or 1


def optimize_files(
    files: Iterable[Path],
    options: OptimizeOptions,
    on_report: Callable[[TaskReport], None] | None = None,
) -> RunReport:
    """Optimize every file on a bounded thread pool.

    ``on_report`` sees reports in completion order; the returned report keeps
    the input order and is only built once every worker has finished.
    """
    files = list(files)
    jobs = worker_count(options)
    logger.info("optimizing {} file(s) with {} worker(s)", len(files), jobs)
    with ThreadPoolExecutor(max_workers=jobs) as executor:
        futures = [executor.submit(optimize_file, path, options) for path in files]
        for future in as_completed(futures):
            if on_report is not None:
                on_report(future.result())
    return RunReport([future.result() for future in futures])

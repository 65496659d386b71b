from __future__ import annotations

import argparse
import os
from pathlib import Path
import sys

from loguru import logger
from tqdm import tqdm

from .engines import check_engines, resolve_engines
from .errors import ConfigurationError, EngineUnavailableError
from .log import setup_logging
from .models import OptimizeOptions, RunReport, TaskReport, collect_png_files, format_size
from .scheduler import optimize_files

EXIT_USAGE = 2
EXIT_MISSING_PATH = 3
EXIT_ENGINE_UNAVAILABLE = 4
JOBS_ENV = "PNGSHRINK_JOBS"
TIMEOUT_ENV = "PNGSHRINK_TIMEOUT"


def parse_args(args: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pngshrink",
        description="Losslessly shrink PNG files by running external optimizers until they stop helping.",
    )
    parser.add_argument("paths", nargs="+", type=Path, help="PNG files or directories to scan recursively")
    parser.add_argument("-d", "--debug", action="store_true", help="log every engine step")
    parser.add_argument(
        "-t",
        "--threshold",
        type=int,
        default=1,
        help="bytes an iteration must save for another one to run (default: 1)",
    )
    parser.add_argument("-j", "--jobs", type=int, help=f"worker threads, 0 = one per CPU (env {JOBS_ENV}, default: 0)")
    parser.add_argument(
        "--timeout",
        type=float,
        help=f"seconds before an engine invocation is killed (env {TIMEOUT_ENV}, default: no limit)",
    )
    parsed = parser.parse_args(args)
    try:
        if parsed.jobs is None:
            parsed.jobs = int(os.environ.get(JOBS_ENV, "0"))
        if parsed.timeout is None and os.environ.get(TIMEOUT_ENV):
            parsed.timeout = float(os.environ[TIMEOUT_ENV])
    except ValueError as error:
        parser.error(f"invalid environment value: {error}")
    return parsed


def main(argv: list[str] | None = None) -> None:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    setup_logging(args.debug)
    missing = [path for path in args.paths if not path.exists()]
    if missing:
        for path in missing:
            logger.error("path does not exist: {}", path)
        raise SystemExit(EXIT_MISSING_PATH)
    try:
        options = OptimizeOptions(
            engines=resolve_engines(),
            jobs=args.jobs,
            threshold=args.threshold,
            timeout=args.timeout,
        )
    except ConfigurationError as error:
        logger.error("{}", error)
        raise SystemExit(EXIT_USAGE) from error
    try:
        check_engines(options.engines)
    except EngineUnavailableError as error:
        logger.error("{}", error)
        raise SystemExit(EXIT_ENGINE_UNAVAILABLE) from error
    files = collect_png_files(args.paths)
    if not files:
        logger.warning("no PNG files found")
    report = run(files, options)
    print(format_summary(report))


def run(files: list[Path], options: OptimizeOptions) -> RunReport:
    with tqdm(total=len(files), unit="file", disable=None, file=sys.stderr) as progress:

        def on_report(report: TaskReport) -> None:
            progress.update(1)
            tqdm.write(format_report(report))

        return optimize_files(files, options, on_report)


def format_report(report: TaskReport) -> str:
    if report.aborted:
        return f"{report.path}: ABORTED: {report.message}"
    return (
        f"{report.path}: {format_size(report.original_size)} -> {format_size(report.final_size)} "
        f"({report.delta:+d} bytes, {report.percent:+.2f}%) in {report.iterations} iteration(s)"
    )


def format_summary(report: RunReport) -> str:
    lines = [
        f"Total: {format_size(report.total_before)} -> {format_size(report.total_after)} "
        f"({report.delta:+d} bytes, {report.percent:+.2f}%) over {len(report.tasks)} file(s)"
    ]
    if report.aborted:
        lines.append(f"Aborted: {len(report.aborted)} file(s)")
    return "\n".join(lines)

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import platform
import shutil
import subprocess
import sys
from typing import Iterable

from loguru import logger

from .errors import EngineUnavailableError
from .models import Engine, EngineResult

WINDOWS_CREATIONFLAGS = (
    getattr(subprocess, "CREATE_NO_WINDOW", 0) if sys.platform.startswith("win") else 0
)
VENDOR_ENV = "PNGSHRINK_VENDOR_DIR"
VERSION_CHECK_TIMEOUT = 30.0


@dataclass(frozen=True)
class EngineSpec:
    name: str
    executables: tuple[str, ...]
    passes: tuple[tuple[str, ...], ...]
    version_args: tuple[str, ...]
    fresh_copy: bool = False


DEFAULT_ENGINES: tuple[EngineSpec, ...] = (
    EngineSpec(
        name="imagemagick",
        executables=("magick", "convert"),
        passes=(("{source}", "-strip", "PNG32:{working}"),),
        version_args=("-version",),
    ),
    EngineSpec(
        name="optipng",
        executables=("optipng",),
        passes=(("-o7", "-nb", "-nc", "-np", "{working}"),),
        version_args=("-v",),
    ),
    EngineSpec(
        name="advdef",
        executables=("advdef",),
        passes=tuple(("-z", f"-{level}", "{working}") for level in range(1, 5)),
        version_args=("--version",),
    ),
    EngineSpec(
        name="oxipng",
        executables=("oxipng",),
        passes=(("--nc", "--np", "-o", "6", "-q", "{working}"),),
        version_args=("--version",),
        fresh_copy=True,
    ),
)


def resolve_engines(specs: Iterable[EngineSpec] = DEFAULT_ENGINES) -> tuple[Engine, ...]:
    return tuple(resolve_engine(spec) for spec in specs)


def resolve_engine(spec: EngineSpec) -> Engine:
    # Unresolved tools keep their bare name so the availability check reports them.
    executable = get_tool_executable(spec.executables) or spec.executables[0]
    return Engine(
        name=spec.name,
        command=(executable,),
        passes=spec.passes,
        version_args=spec.version_args,
        fresh_copy=spec.fresh_copy,
    )


def get_tool_executable(names: Iterable[str]) -> str | None:
    names = list(names)
    for base in get_tool_search_dirs():
        for name in names:
            for path in (base / name, base / f"{name}.exe"):
                if path.is_file():
                    return str(path)
    for name in names:
        system_path = shutil.which(name)
        if system_path:
            return system_path
    return None


def get_tool_search_dirs() -> list[Path]:
    base_dirs: list[Path] = []
    override = os.environ.get(VENDOR_ENV)
    if override:
        base_dirs.append(Path(override))
    vendor_root = Path(__file__).resolve().parent.parent / "vendor"
    platform_key = detect_platform()
    arch_key = detect_arch()
    base_dirs.extend(
        [
            vendor_root / platform_key / arch_key,
            vendor_root / platform_key,
            vendor_root,
        ]
    )
    return base_dirs


def detect_platform() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    return "linux"


def detect_arch() -> str:
    if hasattr(os, "uname"):
        machine = os.uname().machine.lower()
    else:
        machine = platform.machine().lower()
    if machine in {"arm64", "aarch64"}:
        return "arm64"
    if machine in {"x86_64", "amd64"}:
        return "x64"
    return machine


def render_pass(engine: Engine, arguments: tuple[str, ...], source: Path, working: Path) -> list[str]:
    values = {"source": str(source), "working": str(working)}
    return [*engine.command, *(argument.format(**values) for argument in arguments)]


def run_engine(
    engine: Engine,
    source: Path,
    working: Path,
    timeout: float | None = None,
) -> EngineResult:
    """Apply one engine to the working copy in place.

    The result only reports whether every pass exited cleanly. Whether the
    output is acceptable is decided by the verifier afterwards.
    """
    if engine.fresh_copy:
        shutil.copyfile(source, working)
    succeeded = True
    returncode: int | None = 0
    details = []
    for arguments in engine.passes:
        command = render_pass(engine, arguments, source, working)
        try:
            result = run_command(command, timeout)
        except OSError as error:
            succeeded = False
            returncode = None
            details.append(f"cannot execute {command[0]}: {error}")
            continue
        except subprocess.TimeoutExpired:
            succeeded = False
            returncode = None
            details.append(f"timed out after {timeout}s: {' '.join(arguments)}")
            continue
        if result.returncode != 0:
            succeeded = False
            returncode = result.returncode
            stderr = result.stderr.decode(errors="replace").strip()
            details.append(f"exit {result.returncode}: {stderr}" if stderr else f"exit {result.returncode}")
    return EngineResult(engine.name, succeeded, returncode, "; ".join(details))


def check_engines(engines: Iterable[Engine], timeout: float | None = VERSION_CHECK_TIMEOUT) -> None:
    for engine in engines:
        command = [*engine.command, *engine.version_args]
        try:
            result = run_command(command, timeout)
        except FileNotFoundError:
            raise EngineUnavailableError(engine.name, f"{engine.command[0]} not found") from None
        except (subprocess.TimeoutExpired, OSError) as error:
            raise EngineUnavailableError(engine.name, str(error)) from error
        if result.returncode != 0:
            raise EngineUnavailableError(
                engine.name, f"'{' '.join(command)}' exited with {result.returncode}"
            )
        logger.debug("engine {} available at {}", engine.name, engine.command[0])


def run_command(command: list[str], timeout: float | None = None) -> subprocess.CompletedProcess[bytes]:
    return subprocess.run(
        command,
        capture_output=True,
        timeout=timeout,
        creationflags=WINDOWS_CREATIONFLAGS,
    )

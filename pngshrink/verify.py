from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import shutil

import cv2
from loguru import logger
import numpy as np
from PIL import Image

from .errors import InvalidOutcomeError, VerificationError
from .models import Outcome

# Pillow reports broken PNG chunks as SyntaxError and bad modes as ValueError.
DECODE_ERRORS = (OSError, ValueError, SyntaxError, Image.DecompressionBombError)
RGBA_MODES = {"P", "PA"}


@dataclass(frozen=True)
class Snapshot:
    """Decoded pixels of one file.

    Pillow reduces 16-bit RGB and RGBA samples to 8 bits when decoding, so
    ``samples`` keeps the full-precision array for files deeper than 8 bits.
    """

    image: Image.Image
    samples: np.ndarray | None = None


@dataclass(frozen=True)
class Verification:
    outcome: Outcome
    baseline_size: int
    candidate_size: int
    candidate: Snapshot | None = None


def load_image(path: Path) -> Image.Image:
    with Image.open(path) as image:
        image.load()
        return image.copy()


def load_samples(path: Path) -> np.ndarray | None:
    """Return the undecimated samples of a PNG with more than 8 bits per sample."""
    try:
        samples = cv2.imdecode(np.fromfile(path, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    except (OSError, cv2.error) as error:
        logger.debug("{} has no full-precision decode: {}", path, error)
        return None
    if samples is None or samples.dtype == np.uint8:
        return None
    return samples


def load_snapshot(path: Path) -> Snapshot:
    return Snapshot(load_image(path), load_samples(path))


def load_baseline(path: Path) -> Snapshot:
    try:
        return load_snapshot(path)
    except DECODE_ERRORS as error:
        raise VerificationError(f"cannot decode {path}: {error}") from error


def load_candidate(path: Path) -> Snapshot | None:
    try:
        return load_snapshot(path)
    except DECODE_ERRORS as error:
        logger.debug("candidate {} does not decode: {}", path, error)
        return None


def snapshots_equal(baseline: Snapshot, candidate: Snapshot) -> bool:
    if not pixels_equal(baseline.image, candidate.image):
        return False
    if baseline.samples is None:
        return True
    # A 16-bit baseline only matches a candidate that kept every sample bit.
    return candidate.samples is not None and np.array_equal(baseline.samples, candidate.samples)


def pixels_equal(first: Image.Image, second: Image.Image) -> bool:
    """Compare decoded pixel content, ignoring how the PNG stores it."""
    if first.size != second.size:
        return False
    if first.mode == second.mode and not needs_rgba(first) and not needs_rgba(second):
        return first.tobytes() == second.tobytes()
    try:
        return as_rgba(first).tobytes() == as_rgba(second).tobytes()
    except ValueError:
        # No RGBA conversion exists for some high bit-depth modes.
        return False


def needs_rgba(image: Image.Image) -> bool:
    return image.mode in RGBA_MODES or "transparency" in image.info


def as_rgba(image: Image.Image) -> Image.Image:
    if image.mode == "RGBA":
        return image
    return image.convert("RGBA")


def classify(pixel_identical: bool, got_smaller: bool) -> Outcome:
    if pixel_identical:
        return Outcome.IMPROVED if got_smaller else Outcome.NO_GAIN
    return Outcome.CORRUPTED if got_smaller else Outcome.INVALID


def verify(baseline: Snapshot, canonical: Path, working: Path) -> Verification:
    baseline_size = canonical.stat().st_size
    if not working.exists():
        # A vanished working copy is treated like a truncated one: restored by rollback.
        return Verification(Outcome.CORRUPTED, baseline_size, 0)
    candidate_size = working.stat().st_size
    candidate = load_candidate(working)
    identical = candidate is not None and snapshots_equal(baseline, candidate)
    outcome = classify(identical, candidate_size < baseline_size)
    return Verification(outcome, baseline_size, candidate_size, candidate)


def settle(verification: Verification, engine: str, canonical: Path, working: Path) -> None:
    """Commit, discard or roll back the working copy according to the outcome."""
    outcome = verification.outcome
    sizes = f"{verification.baseline_size} -> {verification.candidate_size} bytes"
    if outcome is Outcome.IMPROVED:
        replace_file(working, canonical)
        logger.debug("{}: {} improved ({})", canonical, engine, sizes)
    elif outcome is Outcome.NO_GAIN:
        logger.debug("{}: {} made no gain ({})", canonical, engine, sizes)
    elif outcome is Outcome.CORRUPTED:
        replace_file(canonical, working)
        logger.warning(
            "{}: {} altered pixels ({}); rolled back to the last verified state",
            canonical,
            engine,
            sizes,
        )
    else:
        logger.error("{}: {} altered pixels without reducing size ({})", canonical, engine, sizes)
        raise InvalidOutcomeError(engine, canonical)


def replace_file(source: Path, target: Path) -> None:
    """Copy ``source`` over ``target`` so readers only ever see a whole file.

    A symlinked ``target`` stays a symlink: the file it points to is the one
    replaced. Mode and owner carry over to the new file. Other hard links to
    the old file keep its old contents.
    """
    target = Path(os.path.realpath(target))
    temp = target.with_name(f"{target.name}.__swap")
    try:
        with source.open("rb") as reader, temp.open("wb") as writer:
            shutil.copyfileobj(reader, writer)
            writer.flush()
            os.fsync(writer.fileno())
        if target.exists():
            copy_metadata(target, temp)
        temp.replace(target)
    finally:
        temp.unlink(missing_ok=True)


def copy_metadata(original: Path, replacement: Path) -> None:
    shutil.copymode(original, replacement)
    owner = original.stat()
    current = replacement.stat()
    if (owner.st_uid, owner.st_gid) == (current.st_uid, current.st_gid) or not hasattr(os, "chown"):
        return
    try:
        os.chown(replacement, owner.st_uid, owner.st_gid)
    except PermissionError as error:
        logger.warning("{}: cannot keep owner {}:{}: {}", original, owner.st_uid, owner.st_gid, error)

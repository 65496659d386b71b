"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path
import sys

from loguru import logger
from PIL import Image
from PIL.PngImagePlugin import PngInfo
import pytest

from pngshrink.models import Engine

FAKE_ENGINE = Path(__file__).resolve().parent / "fake_engine.py"


@pytest.fixture()
def make_engine():
    """Build an Engine that runs tests/fake_engine.py in the given mode."""

    def _make(
        mode: str,
        name: str | None = None,
        *,
        reads_source: bool = False,
        passes: int = 1,
        fresh_copy: bool = False,
    ) -> Engine:
        template = ("{source}", "{working}") if reads_source else ("{working}",)
        return Engine(
            name=name or mode,
            command=(sys.executable, str(FAKE_ENGINE), mode),
            passes=tuple(template for _ in range(passes)),
            fresh_copy=fresh_copy,
        )

    return _make


@pytest.fixture()
def make_png(tmp_path: Path):
    """Write an uncompressed gradient PNG, optionally padded with text chunks."""

    def _make(
        name: str = "image.png",
        size: tuple[int, int] = (64, 64),
        texts: int = 0,
        seed: int = 0,
    ) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        width, height = size
        image = Image.new("RGB", size)
        image.putdata(
            [
                ((x * 7 + seed) % 256, (y * 13 + seed) % 256, (x + y + seed) % 256)
                for y in range(height)
                for x in range(width)
            ]
        )
        info = PngInfo()
        for index in range(texts):
            info.add_text(f"note{index}", "n" * 400)
        image.save(path, format="PNG", compress_level=0, pnginfo=info)
        return path

    return _make


@pytest.fixture()
def log_messages():
    messages: list[str] = []
    handler_id = logger.add(messages.append, level="DEBUG", format="{level} {message}")
    yield messages
    logger.remove(handler_id)


def same_pixels(first: Path, second: Path) -> bool:
    with Image.open(first) as a, Image.open(second) as b:
        return a.convert("RGBA").tobytes() == b.convert("RGBA").tobytes()


@pytest.fixture()
def pixels_match():
    return same_pixels

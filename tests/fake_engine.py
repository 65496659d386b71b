"""Stand-in for external PNG engines, driven by the first argument.

Usage: fake_engine.py MODE [SOURCE] WORKING
"""

from __future__ import annotations

from pathlib import Path
import sys
import time

from PIL import Image, ImageOps
from PIL.PngImagePlugin import PngInfo


def load(path: Path) -> Image.Image:
    with Image.open(path) as image:
        image.load()
        return image.copy()


def shrink(working: Path) -> None:
    load(working).save(working, format="PNG", optimize=True)


def recolor(source: Path, working: Path) -> None:
    load(source).convert("RGBA").save(working, format="PNG", optimize=True)


def strip_chunk(working: Path) -> None:
    with Image.open(working) as png:
        png.load()
        texts = dict(png.text)
        image = png.copy()
    info = PngInfo()
    for key in sorted(texts)[1:]:
        info.add_text(key, texts[key])
    image.save(working, format="PNG", compress_level=0, pnginfo=info)


def corrupt_smaller(working: Path) -> None:
    Image.new("RGB", (1, 1), (255, 0, 0)).save(working, format="PNG")


def corrupt_larger(working: Path) -> None:
    image = ImageOps.invert(load(working).convert("RGB"))
    info = PngInfo()
    info.add_text("padding", "x" * 65536)
    image.save(working, format="PNG", compress_level=0, pnginfo=info)


def truncate(working: Path) -> None:
    data = working.read_bytes()
    working.write_bytes(data[: len(data) // 2])


def main(argv: list[str]) -> int:
    mode, *paths = argv
    if paths == ["--version"]:
        print(f"fake-engine {mode} 1.0")
        return 0
    working = Path(paths[-1])
    if mode == "noop":
        return 0
    if mode == "fail":
        print("fake engine failure", file=sys.stderr)
        return 3
    if mode == "sleep":
        time.sleep(30)
        return 0
    if mode == "recolor":
        recolor(Path(paths[0]), working)
        return 0
    handlers = {
        "shrink": shrink,
        "strip-chunk": strip_chunk,
        "corrupt-smaller": corrupt_smaller,
        "corrupt-larger": corrupt_larger,
        "truncate": truncate,
    }
    handlers[mode](working)
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))

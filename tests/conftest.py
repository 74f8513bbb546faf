"""Shared fixtures: settings and on-disk test images."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from PIL import Image

from classifyx.config import Settings

if TYPE_CHECKING:
    from pathlib import Path


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "api_key": None,
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "max_concurrent": 2,
        "input_size": 224,
        "top_k": 5,
        "default_num_classes": 1000,
        "apply_softmax": True,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def write_image(
    path: Path,
    size: tuple[int, int] = (64, 48),
    color: tuple[int, ...] | int = (120, 60, 200),
    mode: str = "RGB",
) -> Path:
    """Save a solid-color image; the format follows the file suffix."""
    Image.new(mode, size, color).save(path)
    return path


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def image_file(tmp_path: Path) -> Path:
    return write_image(tmp_path / "sample.png")


@pytest.fixture()
def corrupt_image(tmp_path: Path) -> Path:
    path = tmp_path / "corrupt.jpg"
    path.write_bytes(b"this is not a jpeg")
    return path

"""Image preprocessing pipeline.

Decodes an image file, stretches it to the model input size, and converts it
to a channel-first float32 tensor normalized with ImageNet statistics.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

from classifyx.ml.errors import DecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

IMAGENET_MEAN: NDArray[np.float32] = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD: NDArray[np.float32] = np.array([0.229, 0.224, 0.225], dtype=np.float32)

DEFAULT_INPUT_SIZE: int = 224
DEFAULT_MAX_IMAGE_PIXELS: int = 16_777_216


class ImagePreprocessor:
    """Turns image files into (3, H, W) model input tensors.

    Holds only immutable configuration, so one instance can be shared across
    threads.
    """

    def __init__(
        self,
        input_size: int = DEFAULT_INPUT_SIZE,
        max_image_pixels: int = DEFAULT_MAX_IMAGE_PIXELS,
    ) -> None:
        self._input_size = input_size
        self._max_image_pixels = max_image_pixels

    @property
    def input_size(self) -> int:
        return self._input_size

    def decode_image(self, path: str | Path) -> NDArray[np.uint8]:
        """Decode an image file into an RGB uint8 array resized to the input size.

        Returns:
            HxWx3 RGB uint8 numpy array with H = W = ``input_size``.

        Raises:
            DecodeError: If the file is missing, unreadable, not an image, or
                exceeds the pixel limit.
        """
        try:
            with Image.open(path) as img:
                width, height = img.size
                if width * height > self._max_image_pixels:
                    raise DecodeError(
                        f"Image {path} has {width * height} pixels, limit is {self._max_image_pixels}"
                    )
                rgb = img.convert("RGB")
        except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Cannot decode image {path}: {exc}") from exc

        size = (self._input_size, self._input_size)
        resized = rgb.resize(size, Image.Resampling.LANCZOS)
        return np.asarray(resized, dtype=np.uint8)

    def preprocess(self, path: str | Path) -> NDArray[np.float32]:
        """Decode ``path`` and return a normalized (3, H, W) float32 tensor."""
        return normalize(self.decode_image(path))


def normalize(image: NDArray[np.uint8]) -> NDArray[np.float32]:
    """Normalize an HxWx3 uint8 image to a channel-first float32 tensor.

    Each value becomes ``(v / 255 - mean_c) / std_c``.
    """
    scaled = image.astype(np.float32) / np.float32(255.0)
    normalized = (scaled - IMAGENET_MEAN) / IMAGENET_STD
    return np.ascontiguousarray(normalized.transpose(2, 0, 1), dtype=np.float32)

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Tuple

from PIL import Image, ImageEnhance, ImageOps

from controller.slots import LiveQuality

# cameraSettings resolution index -> output bounds
CAPTURE_RESOLUTIONS = {
    1: (1280, 960),
    2: (1920, 1440),
    3: (2592, 1944),
    4: (3200, 2400),
}

BACKGROUND = (0, 0, 0)


class FrameEncodingError(Exception):
    pass


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    width: int
    height: int

    @property
    def size_bytes(self) -> int:
        return len(self.data)


def _open(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except Exception as e:
        raise FrameEncodingError("Failed to decode camera image") from e
    return img.convert("RGB")


def _encode_jpeg(img: Image.Image, quality: int) -> bytes:
    out = io.BytesIO()
    img.save(out, format="JPEG", quality=quality, optimize=True)
    return out.getvalue()


def _fit_preserve_aspect(
        img: Image.Image,
        target_size: Tuple[int, int],
        background_color: Tuple[int, int, int] = BACKGROUND,
) -> Image.Image:
    """Resize `img` to exactly `target_size` without cropping or distortion.

    If aspect ratios differ, the image is letterboxed/pillarboxed using
    `background_color`.
    """
    target_w, target_h = target_size
    src_w, src_h = img.size

    if src_w <= 0 or src_h <= 0:
        raise FrameEncodingError("Invalid image dimensions")

    scale = min(target_w / src_w, target_h / src_h)
    new_w = max(1, int(round(src_w * scale)))
    new_h = max(1, int(round(src_h * scale)))

    resized = img.resize((new_w, new_h), resample=Image.Resampling.LANCZOS)
    canvas = Image.new("RGB", (target_w, target_h), background_color)
    canvas.paste(resized, ((target_w - new_w) // 2, (target_h - new_h) // 2))
    return canvas


def encode_live_frame(data: bytes, quality: LiveQuality) -> bytes:
    """Fit a preview frame to the negotiated size and re-encode it.

    The negotiated quality level (1-100) is used directly as JPEG quality.
    """
    img = _open(data)
    img = _fit_preserve_aspect(img, (quality.width, quality.height))
    return _encode_jpeg(img, quality.quality_level)


def compression_to_jpeg_quality(compression: int) -> int:
    # 5 (very high quality) .. 25 (low)
    return max(1, min(95, 100 - 2 * compression))


def apply_capture_settings(data: bytes, settings: dict) -> EncodedImage:
    """Apply the persisted cameraSettings to a captured still.

    Resolution bounds the output (never upscales), rotation is clockwise in
    degrees, saturation -100 gives grayscale, effect "negative" inverts, and
    sharpness 25 leaves the image unchanged.
    """
    img = _open(data)

    bounds = CAPTURE_RESOLUTIONS.get(settings["resolution"])
    if bounds is not None:
        img.thumbnail(bounds, resample=Image.Resampling.LANCZOS)

    if settings["rotation"]:
        img = img.rotate(-settings["rotation"], expand=True)

    img = ImageEnhance.Color(img).enhance(max(0.0, 1 + settings["saturation"] / 100))
    img = ImageEnhance.Sharpness(img).enhance(1 + (settings["sharpness"] - 25) / 75)

    if settings["effect"] == "negative":
        img = ImageOps.invert(img)

    encoded = _encode_jpeg(img, compression_to_jpeg_quality(settings["compression"]))
    return EncodedImage(encoded, img.width, img.height)


def image_dimensions(data: bytes) -> Tuple[int, int]:
    return _open(data).size

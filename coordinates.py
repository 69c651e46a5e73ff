"""
Percent <-> pixel coordinate conversion for template layers.

Percent coordinates (0-1 fractions of the reference canvas) are the durable
source of truth. Pixel values are always re-derived from them for whichever
reference canvas is current, never the other way round.
"""

from __future__ import annotations

import math
from typing import NamedTuple

import config

FIT_MODES = ("contain", "cover", "fill", "none")

# Smallest QR code the editor will produce, in pixels.
MIN_QR_SIZE_PX = 16


class CanvasSize(NamedTuple):
    width: int
    height: int


DEFAULT_REFERENCE_SIZE = CanvasSize(config.REFERENCE_WIDTH, config.REFERENCE_HEIGHT)

# Canvas that pixel-only layers saved before percent positioning refer to.
LEGACY_CANVAS_SIZE = CanvasSize(1500, 2121)


def resolve_reference_size(size: CanvasSize | tuple[int, int] | None) -> CanvasSize:
    """Return *size* as a CanvasSize, or the default canvas when no image is loaded."""
    if size is None:
        return DEFAULT_REFERENCE_SIZE
    width, height = size
    if width <= 0 or height <= 0:
        raise ValueError(f"Reference canvas size must be positive, got {width} x {height}.")
    return CanvasSize(int(width), int(height))


def round_half_up(value: float) -> int:
    # Editor rounding: 0.5 always goes up, unlike Python's round().
    return int(math.floor(value + 0.5))


def clamp_percent(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def clamp_to_canvas(x: float, y: float, ref_width: int, ref_height: int) -> tuple[float, float]:
    return max(0.0, min(float(ref_width), x)), max(0.0, min(float(ref_height), y))


def to_absolute(percent_x: float, percent_y: float, ref_width: int, ref_height: int) -> tuple[int, int]:
    return round_half_up(percent_x * ref_width), round_half_up(percent_y * ref_height)


def to_percent(x: float, y: float, ref_width: int, ref_height: int) -> tuple[float, float]:
    if ref_width <= 0 or ref_height <= 0:
        raise ValueError(f"Reference canvas size must be positive, got {ref_width} x {ref_height}.")
    return x / ref_width, y / ref_height


def size_to_absolute(width_percent: float, height_percent: float, ref: CanvasSize) -> tuple[int, int]:
    return to_absolute(width_percent, height_percent, ref.width, ref.height)


def size_to_percent(width: float, height: float, ref: CanvasSize) -> tuple[float, float]:
    return to_percent(width, height, ref.width, ref.height)


def square_size(width_percent: float, ref: CanvasSize, minimum: int = MIN_QR_SIZE_PX) -> tuple[int, float]:
    """Pixel side and percent for a square layer.

    Both sides of a square are measured against the reference *width*, so
    the returned percent is valid for width and height alike and the layer
    stays square whatever the canvas aspect ratio.
    """
    side = max(minimum, round_half_up(width_percent * ref.width))
    return side, side / ref.width


def aspect_locked_height(width: float, original_width: float, original_height: float) -> int:
    if original_width <= 0 or original_height <= 0:
        return round_half_up(width)
    return max(1, round_half_up(width * original_height / original_width))


def aspect_locked_width(height: float, original_width: float, original_height: float) -> int:
    if original_width <= 0 or original_height <= 0:
        return round_half_up(height)
    return max(1, round_half_up(height * original_width / original_height))


def calculate_fit_dimensions(
    source_width: float,
    source_height: float,
    target_width: float,
    target_height: float,
    fit_mode: str,
) -> dict[str, float]:
    """Size and offset of a source image drawn into a target box.

    fill    – stretch to the box (may distort)
    none    – original size, centred
    contain – fit inside keeping aspect (letterbox / pillarbox)
    cover   – fill the box keeping aspect (edges cropped)
    """
    if fit_mode not in FIT_MODES:
        raise ValueError(f"Unknown fit mode {fit_mode!r}. Expected one of {', '.join(FIT_MODES)}.")

    if fit_mode == "fill" or source_width <= 0 or source_height <= 0 or target_height <= 0:
        return {"width": target_width, "height": target_height, "offset_x": 0.0, "offset_y": 0.0}

    if fit_mode == "none":
        return {
            "width": source_width,
            "height": source_height,
            "offset_x": (target_width - source_width) / 2,
            "offset_y": (target_height - source_height) / 2,
        }

    source_aspect = source_width / source_height
    target_aspect = target_width / target_height
    wider = source_aspect > target_aspect

    # contain scales to the constraining side, cover to the other one.
    if (fit_mode == "contain") == wider:
        scaled_height = target_width / source_aspect
        return {
            "width": target_width,
            "height": scaled_height,
            "offset_x": 0.0,
            "offset_y": (target_height - scaled_height) / 2,
        }
    scaled_width = target_height * source_aspect
    return {
        "width": scaled_width,
        "height": target_height,
        "offset_x": (target_width - scaled_width) / 2,
        "offset_y": 0.0,
    }


def normalize_font_size(
    size: float | None,
    minimum: int = 12,
    maximum: int = 24,
    default: int = 14,
) -> int:
    """Keep UI-entered font sizes inside a safe range."""
    if not size or math.isnan(size):
        return default
    return max(minimum, min(maximum, round_half_up(size)))

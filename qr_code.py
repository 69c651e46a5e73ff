"""
QR code layer helpers: placeholder substitution, data validation and sizing.

Image generation itself happens in the renderer; this module only decides
what goes into the code and how big it is drawn.
"""

from __future__ import annotations

import re
from typing import Any

import config
from coordinates import round_half_up

CERTIFICATE_URL_PLACEHOLDER = "{{CERTIFICATE_URL}}"

MAX_QR_DATA_LENGTH = 2000

# Approximate maximum characters per error-correction level and encoding mode.
QR_CAPACITY: dict[str, dict[str, int]] = {
    "L": {"numeric": 7089, "alphanumeric": 4296, "binary": 2953},
    "M": {"numeric": 5596, "alphanumeric": 3391, "binary": 2331},
    "Q": {"numeric": 3993, "alphanumeric": 2420, "binary": 1663},
    "H": {"numeric": 3057, "alphanumeric": 1852, "binary": 1273},
}

_ALPHANUMERIC_RE = re.compile(r"^[0-9A-Z $%*+\-./:]*$")

# Pixel bounds for the rendered QR image.
MIN_RENDER_SIZE = 150
MAX_RENDER_SIZE = 800
DEFAULT_LAYER_SIZE = 200


def certificate_url(public_id: str, base_url: str | None = None) -> str:
    base = (base_url if base_url is not None else config.PUBLIC_BASE_URL).rstrip("/")
    return f"{base}/certificate/{public_id}"


def process_qr_data_placeholder(qr_data: str, public_id: str, base_url: str | None = None) -> str:
    """Replace every {{CERTIFICATE_URL}} in *qr_data* with the certificate's public URL."""
    return qr_data.replace(CERTIFICATE_URL_PLACEHOLDER, certificate_url(public_id, base_url))


def validate_qr_data(data: Any) -> bool:
    if not data or not isinstance(data, str):
        return False
    return len(data) <= MAX_QR_DATA_LENGTH


def detect_encoding_mode(data: str) -> str:
    if data.isdigit():
        return "numeric"
    if _ALPHANUMERIC_RE.match(data):
        return "alphanumeric"
    return "binary"


def fits_capacity(data: str, error_correction_level: str = "M") -> bool:
    """True when *data* fits a QR code at the given error-correction level."""
    if error_correction_level not in QR_CAPACITY:
        raise ValueError(f"Unknown error correction level {error_correction_level!r}.")
    mode = detect_encoding_mode(data)
    length = len(data.encode("utf-8")) if mode == "binary" else len(data)
    return length <= QR_CAPACITY[error_correction_level][mode]


def calculate_optimal_qr_size(template_width: float, template_height: float, size_percent: float = 0.1) -> int:
    """Recommended QR side for a template: a share of its width, kept within 100..500 px."""
    size = round_half_up(template_width * size_percent)
    return max(100, min(500, size))


def render_size_for_layer(layer: Any) -> int:
    """Pixel size to generate the QR image at for a QR layer (150..800)."""
    width = getattr(layer, "width", 0) or DEFAULT_LAYER_SIZE
    height = getattr(layer, "height", 0) or DEFAULT_LAYER_SIZE
    return int(max(MIN_RENDER_SIZE, min(MAX_RENDER_SIZE, max(width, height))))

"""
Template layer models: text, photo and QR-code layers.

Layers are a tagged union discriminated on `type`. Percent fields are the
durable geometry; the pixel fields (x, y, width, height) are a cache for the
last reference canvas and are rebuilt by `materialize`.

Serialization matches the stored layout JSON (camelCase keys):
    {"type": "qr_code", "id": "qr_1730000000000", "xPercent": 0.85, ...}
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from coordinates import (
    CanvasSize,
    aspect_locked_height,
    calculate_fit_dimensions,
    clamp_percent,
    size_to_absolute,
    square_size,
    to_absolute,
)
from rich_text import TextSpan, load_rich_text, rich_text_to_plain_text
from text_metrics import font_for_style

Pixel = Union[int, float]

# Drawing order: text layers sit above photos (0+) and QR codes (50+).
PHOTO_BASE_Z_INDEX = 0
QR_BASE_Z_INDEX = 50
TEXT_LAYER_Z_INDEX = 100


class BaseLayer(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    x: Pixel = Field(default=0)
    y: Pixel = Field(default=0)
    x_percent: float = Field(default=0.0, alias="xPercent")
    y_percent: float = Field(default=0.0, alias="yPercent")

    @field_validator("x_percent", "y_percent")
    @classmethod
    def _clamp_position(cls, v: float) -> float:
        return clamp_percent(v)


class TextLayer(BaseLayer):
    type: Literal["text"] = "text"
    rich_text: list[TextSpan] = Field(default_factory=lambda: [TextSpan()], alias="richText")
    font_size: Pixel = Field(default=32, alias="fontSize")
    font_family: str = Field(default="Arial", alias="fontFamily")
    font_weight: Union[int, str] = Field(default="normal", alias="fontWeight")
    color: str = Field(default="#000000")
    text_align: Literal["left", "center", "right", "justify"] = Field(default="left", alias="textAlign")
    max_width: Pixel = Field(default=300, alias="maxWidth")
    line_height: float = Field(default=1.2, alias="lineHeight")
    visible: bool = Field(default=True)
    default_text: str | None = Field(default=None, alias="defaultText")
    use_default_text: bool = Field(default=False, alias="useDefaultText")
    # Editor-only state, never persisted.
    is_editing: bool = Field(default=False, alias="isEditing", exclude=True)

    @field_validator("rich_text", mode="before")
    @classmethod
    def _normalize_rich_text(cls, v: Any) -> Any:
        # Stored data may be hand-edited or pre-date normalization.
        return load_rich_text(v)

    @property
    def plain_text(self) -> str:
        return rich_text_to_plain_text(self.rich_text)


class _SizedLayer(BaseLayer):
    width: Pixel = Field(default=0)
    height: Pixel = Field(default=0)
    width_percent: float = Field(default=0.1, alias="widthPercent")
    height_percent: float = Field(default=0.1, alias="heightPercent")
    z_index: int = Field(default=0, alias="zIndex")
    opacity: float = Field(default=1.0, ge=0.0, le=1.0)
    rotation: float = Field(default=0.0)
    visible: bool = Field(default=True)

    @field_validator("width_percent", "height_percent")
    @classmethod
    def _clamp_size(cls, v: float) -> float:
        return clamp_percent(v)


class PhotoLayer(_SizedLayer):
    type: Literal["photo"] = "photo"
    src: str
    storage_path: str = Field(default="", alias="storagePath")
    z_index: int = Field(default=PHOTO_BASE_Z_INDEX, alias="zIndex")
    fit_mode: Literal["contain", "cover", "fill", "none"] = Field(default="fill", alias="fitMode")
    maintain_aspect_ratio: bool = Field(default=False, alias="maintainAspectRatio")
    original_width: int = Field(gt=0, alias="originalWidth")
    original_height: int = Field(gt=0, alias="originalHeight")

    @property
    def aspect_ratio(self) -> float:
        return self.original_height / self.original_width


class QRCodeLayer(_SizedLayer):
    type: Literal["qr_code"] = "qr_code"
    qr_data: str = Field(default="{{CERTIFICATE_URL}}", alias="qrData")
    error_correction_level: Literal["L", "M", "Q", "H"] = Field(default="M", alias="errorCorrectionLevel")
    foreground_color: str = Field(default="#000000", alias="foregroundColor")
    background_color: str = Field(default="#FFFFFF", alias="backgroundColor")
    z_index: int = Field(default=QR_BASE_Z_INDEX, alias="zIndex")
    maintain_aspect_ratio: bool = Field(default=True, alias="maintainAspectRatio")
    margin: int = Field(default=4, ge=0)


Layer = Annotated[Union[TextLayer, PhotoLayer, QRCodeLayer], Field(discriminator="type")]

_layer_adapter = TypeAdapter(Layer)


def parse_layer(data: Any) -> TextLayer | PhotoLayer | QRCodeLayer:
    return _layer_adapter.validate_python(data)


def dump_layer(layer: BaseLayer) -> dict[str, Any]:
    return layer.model_dump(by_alias=True, mode="json", exclude_none=True)


def migrate_legacy_layer(data: dict[str, Any], legacy_size: CanvasSize) -> dict[str, Any]:
    """Fill missing percent fields of a stored layer from its pixel fields.

    Layers saved before percent positioning only carry x/y (and width/height)
    in pixels of the canvas they were saved against.
    """
    migrated = dict(data)
    if migrated.get("xPercent") is None and migrated.get("x") is not None:
        migrated["xPercent"] = float(migrated["x"]) / legacy_size.width
    if migrated.get("yPercent") is None and migrated.get("y") is not None:
        migrated["yPercent"] = float(migrated["y"]) / legacy_size.height
    if migrated.get("type") in ("photo", "qr_code"):
        if migrated.get("widthPercent") is None and migrated.get("width"):
            migrated["widthPercent"] = float(migrated["width"]) / legacy_size.width
        if migrated.get("heightPercent") is None and migrated.get("height"):
            # QR sides are both measured against the width.
            divisor = legacy_size.width if migrated["type"] == "qr_code" else legacy_size.height
            migrated["heightPercent"] = float(migrated["height"]) / divisor
    return migrated


def materialize(layer: BaseLayer, ref: CanvasSize) -> TextLayer | PhotoLayer | QRCodeLayer:
    """Recompute every pixel field of *layer* from its percent fields."""
    x, y = to_absolute(layer.x_percent, layer.y_percent, ref.width, ref.height)

    if isinstance(layer, TextLayer):
        return layer.model_copy(update={"x": x, "y": y})

    if isinstance(layer, QRCodeLayer):
        side, percent = square_size(layer.width_percent, ref)
        return layer.model_copy(
            update={
                "x": x,
                "y": y,
                "width": side,
                "height": side,
                "width_percent": percent,
                "height_percent": percent,
            }
        )

    if isinstance(layer, PhotoLayer):
        width, height = size_to_absolute(layer.width_percent, layer.height_percent, ref)
        width = max(1, width)
        width_percent = layer.width_percent
        if layer.maintain_aspect_ratio:
            # Cap the width so the derived height still fits the canvas.
            max_width = int(ref.height * layer.original_width / layer.original_height)
            if width > max_width:
                width = max(1, max_width)
                width_percent = width / ref.width
            height = min(ref.height, aspect_locked_height(width, layer.original_width, layer.original_height))
            height_percent = height / ref.height
        else:
            height = max(1, height)
            height_percent = layer.height_percent
        return layer.model_copy(
            update={
                "x": x,
                "y": y,
                "width": width,
                "height": height,
                "width_percent": width_percent,
                "height_percent": height_percent,
            }
        )

    raise TypeError(f"Unsupported layer type: {type(layer).__name__}")


def photo_draw_box(layer: PhotoLayer) -> dict[str, float]:
    """Where the photo's pixels land inside its layer box (for the renderer)."""
    fitted = calculate_fit_dimensions(
        layer.original_width, layer.original_height, layer.width, layer.height, layer.fit_mode
    )
    return {
        "x": layer.x + fitted["offset_x"],
        "y": layer.y + fitted["offset_y"],
        "width": fitted["width"],
        "height": fitted["height"],
    }


# ---------------------------------------------------------------------------
# Resolved text runs (what the renderer draws)
# ---------------------------------------------------------------------------


def parse_css_color(value: str, fallback: tuple[float, float, float]) -> tuple[float, float, float]:
    if not isinstance(value, str):
        return fallback
    s = value.strip().lower()
    named = {
        "black": (0.0, 0.0, 0.0),
        "white": (1.0, 1.0, 1.0),
        "red": (1.0, 0.0, 0.0),
        "green": (0.0, 0.5, 0.0),
        "blue": (0.0, 0.0, 1.0),
        "yellow": (1.0, 1.0, 0.0),
        "gray": (0.5, 0.5, 0.5),
        "grey": (0.5, 0.5, 0.5),
    }
    if s in named:
        return named[s]
    if s.startswith("#"):
        hexv = s[1:]
        if len(hexv) == 3:
            hexv = "".join(ch * 2 for ch in hexv)
        if len(hexv) == 6 and all(ch in "0123456789abcdef" for ch in hexv):
            return (
                int(hexv[0:2], 16) / 255.0,
                int(hexv[2:4], 16) / 255.0,
                int(hexv[4:6], 16) / 255.0,
            )
    m = re.match(r"rgb\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*\)", s)
    if m:
        return (
            max(0, min(255, int(m.group(1)))) / 255.0,
            max(0, min(255, int(m.group(2)))) / 255.0,
            max(0, min(255, int(m.group(3)))) / 255.0,
        )
    return fallback


@dataclass(frozen=True)
class ResolvedRun:
    text: str
    font_family: str
    font_weight: int | str
    font_size: float
    color: str
    rgb: tuple[float, float, float]
    font_style: str
    text_decoration: str
    font: str


def resolve_text_runs(layer: TextLayer) -> list[ResolvedRun]:
    """Fill every unset span field from the layer defaults."""
    base_rgb = parse_css_color(layer.color, (0.0, 0.0, 0.0))
    runs: list[ResolvedRun] = []
    for span in layer.rich_text:
        if not span.text:
            continue
        family = span.font_family if span.font_family is not None else layer.font_family
        weight = span.font_weight if span.font_weight is not None else layer.font_weight
        style = span.font_style or "normal"
        color = span.color if span.color is not None else layer.color
        runs.append(
            ResolvedRun(
                text=span.text,
                font_family=family,
                font_weight=weight,
                font_size=float(span.font_size if span.font_size is not None else layer.font_size),
                color=color,
                rgb=parse_css_color(color, base_rgb),
                font_style=style,
                text_decoration=span.text_decoration or "none",
                font=font_for_style(family, weight, style),
            )
        )
    return runs

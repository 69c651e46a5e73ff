"""
Complete template layout: the certificate side, an optional score side and
the metadata stored with them in the template's `layout_config` JSON.

Stored shape:
    {
      "certificate": {"textLayers": [...], "photoLayers": [...], "qrLayers": [...]},
      "score": {...},                       # dual templates only
      "canvas": {"width": 1500, "height": 2121},
      "version": "1.0",
      "lastSavedAt": "2024-01-01T00:00:00+00:00"
    }
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from coordinates import CanvasSize, resolve_reference_size, round_half_up
from layer_registry import LayerRegistry
from layers import QRCodeLayer, TextLayer, dump_layer, materialize, parse_layer
from qr_code import validate_qr_data

logger = logging.getLogger(__name__)

LAYOUT_VERSION = "1.0"

REQUIRED_CERTIFICATE_FIELDS = ("name", "certificate_no", "issue_date")
OPTIONAL_CERTIFICATE_FIELDS = ("description", "expired_date", "category")

# Text layers the editor never lets the user delete, per side.
PROTECTED_LAYER_IDS = {
    "certificate": ("name", "certificate_no", "issue_date", "description"),
    "score": ("issue_date", "description"),
}

DEFAULT_DESCRIPTION_TEXT = "Penghargaan diberikan kepada yang bersangkutan atas dedikasi dan kontribusinya"

_PERCENT_KEYS = ("xPercent", "yPercent", "widthPercent", "heightPercent")
_LAYER_KEYS = (("textLayers", "text"), ("photoLayers", "photo"), ("qrLayers", "qr_code"))


class LayoutValidationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(alias="isValid")
    missing_fields: list[str] = Field(default_factory=list, alias="missingFields")
    errors: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Default layers
# ---------------------------------------------------------------------------


def _text_layer(
    layer_id: str,
    ref: CanvasSize,
    x_percent: float,
    y_percent: float,
    font_size: int,
    max_width: float,
    font_weight: str = "normal",
    text_align: str = "left",
    line_height: float = 1.2,
    default_text: str | None = None,
) -> TextLayer:
    layer = TextLayer(
        id=layer_id,
        x_percent=x_percent,
        y_percent=y_percent,
        font_size=font_size,
        font_weight=font_weight,
        font_family="Arial",
        color="#000000",
        text_align=text_align,
        max_width=max_width,
        line_height=line_height,
        default_text=default_text,
        use_default_text=default_text is not None,
    )
    return materialize(layer, ref)


def _description_layer(ref: CanvasSize, side: str) -> TextLayer:
    if side == "score":
        return _text_layer(
            "description", ref, 400 / 1500, 390 / 2121, 18, 480,
            text_align="center", line_height=1.4, default_text=DEFAULT_DESCRIPTION_TEXT,
        )
    return _text_layer(
        "description", ref, 0.5, 0.65, 30, round_half_up(ref.width * 0.2),
        text_align="center", line_height=1.4, default_text=DEFAULT_DESCRIPTION_TEXT,
    )


def _issue_date_layer(ref: CanvasSize, side: str) -> TextLayer:
    if side == "score":
        return _text_layer("issue_date", ref, 0.7, 0.85, 20, round_half_up(ref.width * 0.2))
    return _text_layer("issue_date", ref, 0.7, 0.85, 26, round_half_up(ref.width * 0.1))


def build_default_certificate_layers(reference_size: CanvasSize | tuple[int, int] | None = None) -> list[TextLayer]:
    ref = resolve_reference_size(reference_size)
    return [
        _text_layer(
            "name", ref, 0.5, 0.5, 48, round_half_up(ref.width * 0.15),
            font_weight="bold", text_align="center",
        ),
        _text_layer("certificate_no", ref, 0.1, 0.1, 26, round_half_up(ref.width * 0.1)),
        _issue_date_layer(ref, "certificate"),
        _description_layer(ref, "certificate"),
    ]


def build_default_score_layers(reference_size: CanvasSize | tuple[int, int] | None = None) -> list[TextLayer]:
    ref = resolve_reference_size(reference_size)
    return [
        _text_layer(
            "name", ref, 0.5, 0.5, 48, round_half_up(ref.width * 0.8),
            font_weight="bold", text_align="center",
        ),
        _issue_date_layer(ref, "score"),
        _description_layer(ref, "score"),
    ]


_DEFAULT_BUILDERS = {
    "certificate": build_default_certificate_layers,
    "score": build_default_score_layers,
}


def build_default_layers(side: str, reference_size: CanvasSize | tuple[int, int] | None = None) -> list[TextLayer]:
    if side not in _DEFAULT_BUILDERS:
        raise ValueError(f"Unknown template side {side!r}.")
    return _DEFAULT_BUILDERS[side](reference_size)


def _default_registry(side: str, ref: CanvasSize, config: Mapping[str, Any] | None = None) -> LayerRegistry:
    config = dict(config or {})
    config["textLayers"] = [dump_layer(layer) for layer in build_default_layers(side, ref)]
    return LayerRegistry.from_config(
        config, side=side, reference_size=ref, protected_ids=PROTECTED_LAYER_IDS[side]
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _side_errors(side: str, side_config: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []
    seen: set[str] = set()
    for key, layer_type in _LAYER_KEYS:
        entries = side_config.get(key) or []
        if not isinstance(entries, list):
            errors.append(f"{side}.{key} must be a list.")
            continue
        for index, entry in enumerate(entries):
            where = f"{side}.{key}[{index}]"
            if not isinstance(entry, Mapping):
                errors.append(f"{where} must be an object.")
                continue
            layer_id = entry.get("id")
            if layer_id in seen:
                errors.append(f"{where}: duplicate layer id {layer_id!r}.")
            seen.add(layer_id)
            for percent_key in _PERCENT_KEYS:
                value = entry.get(percent_key)
                if isinstance(value, (int, float)) and not 0.0 <= value <= 1.0:
                    errors.append(f"{where}: {percent_key} {value} is outside [0, 1].")
            try:
                layer = parse_layer({"type": layer_type, **entry})
            except ValidationError as exc:
                errors.append(f"{where}: {exc.error_count()} invalid field(s) ({exc.errors()[0]['msg']}).")
                continue
            if isinstance(layer, QRCodeLayer):
                if not validate_qr_data(layer.qr_data):
                    errors.append(f"{where}: QR data must be 1-2000 characters.")
                height_percent = entry.get("heightPercent")
                if height_percent is not None and abs(height_percent - layer.width_percent) > 1e-9:
                    errors.append(f"{where}: QR code must be square (widthPercent == heightPercent).")
    return errors


def validate_layout_config(data: Mapping[str, Any]) -> LayoutValidationResult:
    """Check stored layout JSON without loading it.

    Never raises for bad content; every problem is reported in the result.
    """
    errors: list[str] = []
    certificate = data.get("certificate") or {}
    if not isinstance(certificate, Mapping):
        return LayoutValidationResult(
            is_valid=False, missing_fields=list(REQUIRED_CERTIFICATE_FIELDS), errors=["certificate must be an object."]
        )
    text_ids = {
        entry.get("id")
        for entry in certificate.get("textLayers") or []
        if isinstance(entry, Mapping)
    }
    missing = [field for field in REQUIRED_CERTIFICATE_FIELDS if field not in text_ids]

    errors.extend(_side_errors("certificate", certificate))
    score = data.get("score")
    if isinstance(score, Mapping):
        errors.extend(_side_errors("score", score))
    elif score:
        errors.append("score must be an object.")

    canvas = data.get("canvas")
    if canvas is not None:
        width, height = (canvas.get("width"), canvas.get("height")) if isinstance(canvas, Mapping) else (None, None)
        if not isinstance(width, (int, float)) or not isinstance(height, (int, float)) or width <= 0 or height <= 0:
            errors.append("canvas width and height must be positive numbers.")

    return LayoutValidationResult(is_valid=not missing and not errors, missing_fields=missing, errors=errors)


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


class TemplateLayout:
    def __init__(
        self,
        certificate: LayerRegistry,
        score: LayerRegistry | None = None,
        version: str = LAYOUT_VERSION,
        last_saved_at: str | None = None,
    ) -> None:
        if certificate.side != "certificate":
            raise ValueError("The certificate registry must be for the certificate side.")
        if score is not None and score.side != "score":
            raise ValueError("The score registry must be for the score side.")
        self.certificate = certificate
        self.score = score
        self.version = version
        self.last_saved_at = last_saved_at

    @property
    def canvas(self) -> CanvasSize:
        return self.certificate.reference_size

    @property
    def is_dual(self) -> bool:
        return self.score is not None

    def side(self, name: str) -> LayerRegistry:
        if name == "certificate":
            return self.certificate
        if name == "score" and self.score is not None:
            return self.score
        raise KeyError(f"Layout has no {name} side.")

    @classmethod
    def with_defaults(
        cls,
        reference_size: CanvasSize | tuple[int, int] | None = None,
        score_reference_size: CanvasSize | tuple[int, int] | None = None,
        dual: bool = False,
    ) -> "TemplateLayout":
        ref = resolve_reference_size(reference_size)
        certificate = _default_registry("certificate", ref)
        score = None
        if dual:
            score_ref = resolve_reference_size(score_reference_size)
            score = _default_registry("score", score_ref)
        return cls(certificate, score)

    @classmethod
    def from_config(
        cls,
        data: Mapping[str, Any] | None,
        reference_size: CanvasSize | tuple[int, int] | None = None,
        score_reference_size: CanvasSize | tuple[int, int] | None = None,
    ) -> "TemplateLayout":
        """Load stored layout JSON for the given template image size(s).

        A certificate side without text layers gets the default set. A score
        side missing its issue date or description gets the default layer.
        """
        data = data or {}
        ref = resolve_reference_size(reference_size)
        canvas = data.get("canvas")
        saved_canvas = CanvasSize(int(canvas["width"]), int(canvas["height"])) if canvas else None

        certificate_config = data.get("certificate") or {}
        if certificate_config.get("textLayers"):
            certificate = LayerRegistry.from_config(
                certificate_config,
                side="certificate",
                reference_size=ref,
                saved_canvas=saved_canvas,
                protected_ids=PROTECTED_LAYER_IDS["certificate"],
            )
        else:
            logger.info("Layout has no certificate text layers; using defaults.")
            certificate = _default_registry("certificate", ref, certificate_config)

        score = None
        if data.get("score"):
            score_ref = resolve_reference_size(score_reference_size or ref)
            score = LayerRegistry.from_config(
                data["score"],
                side="score",
                reference_size=score_ref,
                saved_canvas=saved_canvas,
                protected_ids=PROTECTED_LAYER_IDS["score"],
            )
            _ensure_score_layers(score)

        return cls(
            certificate,
            score,
            version=str(data.get("version") or LAYOUT_VERSION),
            last_saved_at=data.get("lastSavedAt"),
        )

    def to_config(self, saved_at: datetime | None = None) -> dict[str, Any]:
        saved_at = saved_at or datetime.now(timezone.utc)
        self.last_saved_at = saved_at.isoformat()
        config: dict[str, Any] = {"certificate": self.certificate.to_config()}
        if self.score is not None:
            config["score"] = self.score.to_config()
        config["canvas"] = {"width": self.canvas.width, "height": self.canvas.height}
        config["version"] = LAYOUT_VERSION
        config["lastSavedAt"] = self.last_saved_at
        return config

    def validate(self) -> LayoutValidationResult:
        config: dict[str, Any] = {"certificate": self.certificate.to_config()}
        if self.score is not None:
            config["score"] = self.score.to_config()
        return validate_layout_config(config)


def _ensure_score_layers(score: LayerRegistry) -> None:
    ref = score.reference_size
    for layer_id, factory in (("issue_date", _issue_date_layer), ("description", _description_layer)):
        if layer_id in score:
            continue
        logger.info("Score side is missing %s; adding the default layer.", layer_id)
        default = factory(ref, "score")
        score.add_text_layer(
            layer_id=layer_id,
            x_percent=default.x_percent,
            y_percent=default.y_percent,
            font_size=default.font_size,
            font_weight=default.font_weight,
            text_align=default.text_align,
            max_width=default.max_width,
            line_height=default.line_height,
            default_text=default.default_text,
            use_default_text=default.use_default_text,
        )
    score.selected_layer_id = None

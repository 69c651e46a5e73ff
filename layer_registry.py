"""
LayerRegistry: the layers of one template side ("certificate" or "score").

All geometry edits go percent-first: pixel inputs (drag, resize) are turned
into percent against the current reference canvas, then every pixel field is
re-derived with `layers.materialize`. Updates and deletes addressed to an id
that no longer exists are silent no-ops, because the editor routinely fires
them from stale callbacks.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any, Union

from coordinates import (
    LEGACY_CANVAS_SIZE,
    CanvasSize,
    aspect_locked_height,
    aspect_locked_width,
    clamp_to_canvas,
    resolve_reference_size,
    round_half_up,
    square_size,
    to_percent,
)
from layers import (
    PHOTO_BASE_Z_INDEX,
    QR_BASE_Z_INDEX,
    TEXT_LAYER_Z_INDEX,
    PhotoLayer,
    QRCodeLayer,
    TextLayer,
    dump_layer,
    materialize,
    migrate_legacy_layer,
    parse_layer,
)
from qr_code import CERTIFICATE_URL_PLACEHOLDER
from rich_text import TextSpan, plain_text_to_rich_text, replace_plain_text
from text_metrics import measure_text_width, realign_x

logger = logging.getLogger(__name__)

SIDES = ("certificate", "score")

AnyLayer = Union[TextLayer, PhotoLayer, QRCodeLayer]
TextMeasurer = Callable[..., float]

# Bounds applied while dragging a QR resize handle.
QR_MIN_DRAG_SIZE = 50
QR_MAX_CANVAS_FRACTION = 0.8

_IMMUTABLE_FIELDS = {"id", "type"}
_CONFIG_KEYS = (("textLayers", "text"), ("photoLayers", "photo"), ("qrLayers", "qr_code"))


def _field_names(layer_cls: type[AnyLayer]) -> dict[str, str]:
    names: dict[str, str] = {}
    for name, info in layer_cls.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name
    return names


_FIELD_NAMES = {cls: _field_names(cls) for cls in (TextLayer, PhotoLayer, QRCodeLayer)}


class LayerRegistry:
    def __init__(
        self,
        side: str = "certificate",
        reference_size: CanvasSize | tuple[int, int] | None = None,
        protected_ids: Iterable[str] = (),
        clock: Callable[[], float] = time.time,
        text_measurer: TextMeasurer = measure_text_width,
    ) -> None:
        if side not in SIDES:
            raise ValueError(f"Unknown template side {side!r}. Expected one of {', '.join(SIDES)}.")
        self.side = side
        self._reference = resolve_reference_size(reference_size)
        self._layers: list[AnyLayer] = []
        self._protected = frozenset(protected_ids)
        self._clock = clock
        self.text_measurer = text_measurer
        self._last_id_ms = 0
        # UI selection only; nothing here depends on it.
        self.selected_layer_id: str | None = None

    # ------------------------------------------------------------------ #
    #  Lookup
    # ------------------------------------------------------------------ #

    def __len__(self) -> int:
        return len(self._layers)

    def __iter__(self) -> Iterator[AnyLayer]:
        return iter(list(self._layers))

    def __contains__(self, layer_id: object) -> bool:
        return self._index(layer_id) is not None

    def _index(self, layer_id: object) -> int | None:
        for idx, layer in enumerate(self._layers):
            if layer.id == layer_id:
                return idx
        return None

    def get(self, layer_id: str) -> AnyLayer | None:
        idx = self._index(layer_id)
        return self._layers[idx] if idx is not None else None

    @property
    def layers(self) -> list[AnyLayer]:
        return list(self._layers)

    @property
    def text_layers(self) -> list[TextLayer]:
        return [layer for layer in self._layers if isinstance(layer, TextLayer)]

    @property
    def photo_layers(self) -> list[PhotoLayer]:
        return [layer for layer in self._layers if isinstance(layer, PhotoLayer)]

    @property
    def qr_layers(self) -> list[QRCodeLayer]:
        return [layer for layer in self._layers if isinstance(layer, QRCodeLayer)]

    @property
    def reference_size(self) -> CanvasSize:
        return self._reference

    def is_protected(self, layer_id: str) -> bool:
        return layer_id in self._protected

    def render_order(self) -> list[AnyLayer]:
        """Layers from bottom to top. Text layers share one z level and keep list order."""
        def z_of(layer: AnyLayer) -> int:
            return TEXT_LAYER_Z_INDEX if isinstance(layer, TextLayer) else layer.z_index

        return sorted(self._layers, key=z_of)

    # ------------------------------------------------------------------ #
    #  Reference canvas
    # ------------------------------------------------------------------ #

    def set_reference_size(self, size: CanvasSize | tuple[int, int] | None) -> None:
        """Switch the reference canvas and rebuild every pixel field from percent."""
        self._reference = resolve_reference_size(size)
        self._layers = [materialize(layer, self._reference) for layer in self._layers]

    # ------------------------------------------------------------------ #
    #  Creation
    # ------------------------------------------------------------------ #

    def _next_id(self, prefix: str) -> str:
        # Millisecond timestamps, forced strictly increasing within the registry.
        stamp = max(int(self._clock() * 1000), self._last_id_ms + 1)
        while f"{prefix}_{stamp}" in self:
            stamp += 1
        self._last_id_ms = stamp
        return f"{prefix}_{stamp}"

    def _claim_id(self, layer_id: str | None, prefix: str) -> str:
        if layer_id is None:
            return self._next_id(prefix)
        if layer_id in self:
            raise ValueError(f"Layer ID already exists: {layer_id}")
        return layer_id

    def _next_z(self, layer_cls: type[AnyLayer], base: int) -> int:
        existing = [layer.z_index for layer in self._layers if isinstance(layer, layer_cls)]
        return max(existing) + 1 if existing else base

    def _append(self, layer: AnyLayer) -> AnyLayer:
        layer = materialize(layer, self._reference)
        self._layers.append(layer)
        self.selected_layer_id = layer.id
        return layer

    def add_text_layer(
        self,
        text: str = "",
        *,
        layer_id: str | None = None,
        rich_text: list[TextSpan] | None = None,
        x_percent: float = 0.25,
        y_percent: float = 0.2,
        font_size: float = 32,
        font_family: str = "Arial",
        font_weight: int | str = "normal",
        color: str = "#000000",
        text_align: str | None = None,
        max_width: float = 400,
        line_height: float = 1.2,
        default_text: str | None = None,
        use_default_text: bool = False,
    ) -> TextLayer:
        layer = TextLayer(
            id=self._claim_id(layer_id, "custom"),
            rich_text=rich_text if rich_text is not None else plain_text_to_rich_text(text),
            x_percent=x_percent,
            y_percent=y_percent,
            font_size=font_size,
            font_family=font_family,
            font_weight=font_weight,
            color=color,
            text_align=text_align or ("center" if self.side == "score" else "left"),
            max_width=max_width,
            line_height=line_height,
            default_text=default_text,
            use_default_text=use_default_text,
        )
        return self._append(layer)

    def add_photo_layer(
        self,
        src: str,
        original_width: int,
        original_height: int,
        *,
        storage_path: str = "",
        layer_id: str | None = None,
        x_percent: float = 0.5,
        y_percent: float = 0.3,
        width_percent: float = 0.2,
        fit_mode: str = "fill",
        maintain_aspect_ratio: bool = False,
        opacity: float = 1.0,
        rotation: float = 0.0,
    ) -> PhotoLayer:
        ref = self._reference
        # Initial box takes the image's own proportions in pixels.
        width = max(1, round_half_up(width_percent * ref.width))
        height = aspect_locked_height(width, original_width, original_height)
        layer = PhotoLayer(
            id=self._claim_id(layer_id, "photo"),
            src=src,
            storage_path=storage_path,
            x_percent=x_percent,
            y_percent=y_percent,
            width_percent=width_percent,
            height_percent=height / ref.height,
            z_index=self._next_z(PhotoLayer, PHOTO_BASE_Z_INDEX),
            fit_mode=fit_mode,
            opacity=opacity,
            rotation=rotation,
            maintain_aspect_ratio=maintain_aspect_ratio,
            original_width=original_width,
            original_height=original_height,
        )
        return self._append(layer)

    def add_qr_layer(
        self,
        qr_data: str = CERTIFICATE_URL_PLACEHOLDER,
        *,
        layer_id: str | None = None,
        x_percent: float = 0.85,
        y_percent: float = 0.85,
        size_percent: float = 0.1,
        error_correction_level: str = "M",
        foreground_color: str = "#000000",
        background_color: str = "#FFFFFF",
        margin: int = 4,
    ) -> QRCodeLayer:
        _, percent = square_size(size_percent, self._reference)
        layer = QRCodeLayer(
            id=self._claim_id(layer_id, "qr"),
            qr_data=qr_data,
            error_correction_level=error_correction_level,
            x_percent=x_percent,
            y_percent=y_percent,
            width_percent=percent,
            height_percent=percent,
            foreground_color=foreground_color,
            background_color=background_color,
            z_index=self._next_z(QRCodeLayer, QR_BASE_Z_INDEX),
            margin=margin,
        )
        return self._append(layer)

    # ------------------------------------------------------------------ #
    #  Updates
    # ------------------------------------------------------------------ #

    def _field_values(self, layer: AnyLayer, updates: Mapping[str, Any]) -> dict[str, Any]:
        names = _FIELD_NAMES[type(layer)]
        values: dict[str, Any] = {}
        for key, value in updates.items():
            name = names.get(key)
            if name is None:
                if key != "text":
                    logger.warning("Ignoring unknown field %r for %s layer %s.", key, layer.type, layer.id)
                continue
            if name in _IMMUTABLE_FIELDS:
                continue
            values[name] = value
        return values

    def _resolve_position(self, values: dict[str, Any]) -> None:
        # Absolute x/y only count when no percent was given; the pixel cache is rebuilt anyway.
        x = values.pop("x", None)
        y = values.pop("y", None)
        if "x_percent" not in values and x is not None:
            values["x_percent"] = x / self._reference.width
        if "y_percent" not in values and y is not None:
            values["y_percent"] = y / self._reference.height

    def _resolve_text(self, layer: TextLayer, values: dict[str, Any], updates: Mapping[str, Any]) -> None:
        if "text" in updates and "rich_text" not in values:
            values["rich_text"] = replace_plain_text(layer.rich_text, str(updates["text"]))

        new_align = values.get("text_align")
        if new_align is None or new_align == layer.text_align or "x_percent" in values:
            return
        sample = layer.plain_text or (layer.default_text if layer.use_default_text else None) or layer.id
        width = self.text_measurer(
            sample,
            values.get("font_size", layer.font_size),
            values.get("font_family", layer.font_family),
            values.get("font_weight", layer.font_weight),
            values.get("max_width", layer.max_width),
        )
        ref = self._reference
        new_x = realign_x(layer.x, layer.text_align, new_align, width)
        values["x_percent"] = max(0, min(ref.width, round_half_up(new_x))) / ref.width

    def _resolve_qr_size(self, values: dict[str, Any]) -> None:
        ref = self._reference
        width_percent = values.pop("width_percent", None)
        width = values.pop("width", None)
        height_percent = values.pop("height_percent", None)
        height = values.pop("height", None)
        # A square has one size; whichever dimension was given drives both.
        if width_percent is None and width is not None:
            width_percent = width / ref.width
        if width_percent is None and height_percent is not None:
            width_percent = height_percent
        if width_percent is None and height is not None:
            width_percent = height / ref.width
        if width_percent is not None:
            _, percent = square_size(width_percent, ref)
            values["width_percent"] = percent
            values["height_percent"] = percent
        values.pop("maintain_aspect_ratio", None)

    def _resolve_photo_size(self, layer: PhotoLayer, values: dict[str, Any]) -> None:
        ref = self._reference
        width_percent = values.pop("width_percent", None)
        width = values.pop("width", None)
        height_percent = values.pop("height_percent", None)
        height = values.pop("height", None)
        if width_percent is None and width is not None:
            width_percent = width / ref.width
        if height_percent is None and height is not None:
            height_percent = height / ref.height

        locked = values.get("maintain_aspect_ratio", layer.maintain_aspect_ratio)
        if locked and width_percent is None and height_percent is not None:
            # Height-only edit on a locked photo: derive the width, height follows it.
            original_width = values.get("original_width", layer.original_width)
            original_height = values.get("original_height", layer.original_height)
            locked_width = aspect_locked_width(
                round_half_up(height_percent * ref.height), original_width, original_height
            )
            width_percent = locked_width / ref.width

        if width_percent is not None:
            values["width_percent"] = width_percent
        if height_percent is not None and not locked:
            values["height_percent"] = height_percent

    def update_layer(self, layer_id: str, updates: Mapping[str, Any]) -> AnyLayer | None:
        """Merge *updates* (camelCase or snake_case keys) into a layer.

        Returns the updated layer, or None when the id is unknown.
        """
        idx = self._index(layer_id)
        if idx is None:
            logger.debug("update_layer: no layer %r on the %s side.", layer_id, self.side)
            return None
        layer = self._layers[idx]
        values = self._field_values(layer, updates)
        self._resolve_position(values)

        if isinstance(layer, TextLayer):
            self._resolve_text(layer, values, updates)
        elif isinstance(layer, QRCodeLayer):
            self._resolve_qr_size(values)
        elif isinstance(layer, PhotoLayer):
            self._resolve_photo_size(layer, values)
        else:
            raise TypeError(f"Unsupported layer type: {type(layer).__name__}")

        data = {name: getattr(layer, name) for name in type(layer).model_fields}
        data.update(values)
        updated = materialize(type(layer).model_validate(data), self._reference)
        self._layers[idx] = updated
        return updated

    def move_layer(self, layer_id: str, x: float, y: float) -> AnyLayer | None:
        """Drag a layer to pixel position (x, y), clamped to the canvas."""
        ref = self._reference
        cx, cy = clamp_to_canvas(x, y, ref.width, ref.height)
        x_percent, y_percent = to_percent(cx, cy, ref.width, ref.height)
        return self.update_layer(layer_id, {"x_percent": x_percent, "y_percent": y_percent})

    def resize_qr_layer(self, layer_id: str, size: float) -> QRCodeLayer | None:
        layer = self.get(layer_id)
        if not isinstance(layer, QRCodeLayer):
            logger.debug("resize_qr_layer: %r is not a QR layer.", layer_id)
            return None
        ref = self._reference
        upper = min(ref.width, ref.height) * QR_MAX_CANVAS_FRACTION
        clamped = max(QR_MIN_DRAG_SIZE, min(upper, size))
        return self.update_layer(layer_id, {"width": round_half_up(clamped)})

    def toggle_visibility(self, layer_id: str) -> AnyLayer | None:
        layer = self.get(layer_id)
        if layer is None:
            return None
        return self.update_layer(layer_id, {"visible": not layer.visible})

    def rename_layer(self, old_id: str, new_id: str) -> bool:
        new_id = new_id.strip()
        idx = self._index(old_id)
        if idx is None or not new_id or new_id == old_id:
            return False
        if new_id in self:
            logger.warning("Cannot rename %s: layer ID %s already exists.", old_id, new_id)
            return False
        if old_id in self._protected:
            logger.warning("Cannot rename required layer %s.", old_id)
            return False
        self._layers[idx] = self._layers[idx].model_copy(update={"id": new_id})
        if self.selected_layer_id == old_id:
            self.selected_layer_id = new_id
        return True

    # ------------------------------------------------------------------ #
    #  Deletion
    # ------------------------------------------------------------------ #

    def delete_layer(self, layer_id: str) -> AnyLayer | None:
        """Remove a layer and return it.

        Releasing a photo's stored asset is the caller's job: use the returned
        layer's `storage_path`. Unknown and required ids leave the registry
        unchanged and return None.
        """
        if layer_id in self._protected:
            logger.warning("Layer %s is required on the %s side and cannot be deleted.", layer_id, self.side)
            return None
        idx = self._index(layer_id)
        if idx is None:
            logger.debug("delete_layer: no layer %r on the %s side.", layer_id, self.side)
            return None
        removed = self._layers.pop(idx)
        if self.selected_layer_id == layer_id:
            self.selected_layer_id = None
        return removed

    # ------------------------------------------------------------------ #
    #  Serialization
    # ------------------------------------------------------------------ #

    def to_config(self) -> dict[str, list[dict[str, Any]]]:
        config: dict[str, list[dict[str, Any]]] = {key: [] for key, _ in _CONFIG_KEYS}
        bucket_by_type = {layer_type: key for key, layer_type in _CONFIG_KEYS}
        for layer in self._layers:
            config[bucket_by_type[layer.type]].append(dump_layer(layer))
        return config

    @classmethod
    def from_config(
        cls,
        data: Mapping[str, Any] | None,
        side: str = "certificate",
        reference_size: CanvasSize | tuple[int, int] | None = None,
        saved_canvas: CanvasSize | tuple[int, int] | None = None,
        **kwargs: Any,
    ) -> "LayerRegistry":
        """Rebuild a registry from stored config.

        Stored pixel fields are never trusted: percent is read (or migrated
        from pixels of *saved_canvas*, default the legacy 1500 x 2121 canvas,
        for layers that predate percent) and pixels are recomputed for
        *reference_size*.
        """
        registry = cls(side=side, reference_size=reference_size, **kwargs)
        legacy_size = resolve_reference_size(saved_canvas or LEGACY_CANVAS_SIZE)
        for key, layer_type in _CONFIG_KEYS:
            for entry in (data or {}).get(key) or []:
                raw = migrate_legacy_layer({"type": layer_type, **entry}, legacy_size)
                layer = parse_layer(raw)
                if layer.id in registry:
                    raise ValueError(f"Duplicate layer ID in {side} config: {layer.id}")
                registry._layers.append(materialize(layer, registry.reference_size))
        return registry

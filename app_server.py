import logging
from pathlib import Path
from typing import Any, Literal

# config calls load_dotenv() on import, so it must come before anything that
# reads the environment.
import config

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cache import TTLCache
from coordinates import CanvasSize
from layer_registry import LayerRegistry
from layers import dump_layer
from qr_code import fits_capacity, process_qr_data_placeholder, validate_qr_data
from rich_text import (
    MIXED,
    TextSpan,
    apply_style_to_range,
    dump_rich_text,
    get_range_style_value,
    load_rich_text,
    merge_adjacent_spans,
    replace_plain_text,
    rich_text_from_html,
    rich_text_to_html,
    rich_text_to_plain_text,
)
from template_layout import (
    PROTECTED_LAYER_IDS,
    TemplateLayout,
    build_default_layers,
    validate_layout_config,
)
from text_metrics import measure_text_width, register_fonts_from_directory

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parent
FONTS_DIR = ROOT_DIR / "fonts"

app = FastAPI(title="Certificate Layout API")

# ── CORS ──────────────────────────────────────────────────────────────────────
# Allow the editor dev server to reach the API during development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

CUSTOM_FONTS = register_fonts_from_directory(FONTS_DIR)
logger.info("Registered %d custom font(s) from %s", len(CUSTOM_FONTS), FONTS_DIR)

# Text widths are requested on every alignment change; fonts rarely change.
text_width_cache = TTLCache(ttl_seconds=config.CACHE_TTL_SECONDS, policy="lru", max_entries=4096)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "message": "Request validation failed.",
            "detail": exc.errors(),
            "body": exc.body,
        },
    )


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ApplyStyleRequest(_CamelModel):
    rich_text: Any = Field(default=None, alias="richText")
    start: int = 0
    end: int = 0
    style: dict[str, Any]


class RichTextRequest(_CamelModel):
    rich_text: Any = Field(default=None, alias="richText")


class CommonStyleRequest(_CamelModel):
    rich_text: Any = Field(default=None, alias="richText")
    property: str
    start: int = 0
    end: int = 0


class FromHtmlRequest(BaseModel):
    html: str


class ReplaceTextRequest(_CamelModel):
    rich_text: Any = Field(default=None, alias="richText")
    text: str
    default_style: dict[str, Any] | None = Field(default=None, alias="defaultStyle")


class ReferenceSize(BaseModel):
    width: int | None = Field(default=None, gt=0)
    height: int | None = Field(default=None, gt=0)

    def canvas(self) -> CanvasSize | None:
        if self.width is None and self.height is None:
            return None
        if self.width is None or self.height is None:
            raise HTTPException(status_code=400, detail="Give both width and height, or neither.")
        return CanvasSize(self.width, self.height)


class LayoutRequest(ReferenceSize):
    layout: dict[str, Any] = Field(default_factory=dict)
    score_width: int | None = Field(default=None, alias="scoreWidth", gt=0)
    score_height: int | None = Field(default=None, alias="scoreHeight", gt=0)

    model_config = ConfigDict(populate_by_name=True)

    def score_canvas(self) -> CanvasSize | None:
        return ReferenceSize(width=self.score_width, height=self.score_height).canvas()


class DefaultsRequest(ReferenceSize):
    side: Literal["certificate", "score"] = "certificate"


class LayerUpdateRequest(LayoutRequest):
    side: Literal["certificate", "score"] = "certificate"
    layer_id: str = Field(alias="layerId")
    updates: dict[str, Any]


class MeasureTextRequest(_CamelModel):
    text: str
    font_size: float = Field(alias="fontSize", gt=0)
    font_family: str = Field(default="Arial", alias="fontFamily")
    font_weight: int | str | None = Field(default=None, alias="fontWeight")
    font_style: str | None = Field(default=None, alias="fontStyle")
    max_width: float | None = Field(default=None, alias="maxWidth")


class QRDataRequest(_CamelModel):
    qr_data: str = Field(alias="qrData")
    public_id: str = Field(alias="publicId")
    error_correction_level: Literal["L", "M", "Q", "H"] = Field(default="M", alias="errorCorrectionLevel")


def _load_rich_text(data: Any) -> list[TextSpan]:
    try:
        return load_rich_text(data)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid rich text: {exc}") from exc


def _load_layout(request: LayoutRequest) -> TemplateLayout:
    try:
        return TemplateLayout.from_config(request.layout, request.canvas(), request.score_canvas())
    except (ValidationError, ValueError, KeyError, TypeError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid layout: {exc}") from exc


def _rich_text_response(rich_text: list[TextSpan]) -> dict[str, Any]:
    return {
        "richText": dump_rich_text(rich_text),
        "plainText": rich_text_to_plain_text(rich_text),
    }


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/fonts")
def list_fonts() -> dict[str, Any]:
    """Custom fonts registered from the fonts directory at startup."""
    return {
        "fonts_directory": str(FONTS_DIR),
        "fonts_directory_exists": FONTS_DIR.exists(),
        "custom_fonts": sorted(CUSTOM_FONTS),
        "count": len(CUSTOM_FONTS),
    }


# ── Rich text ─────────────────────────────────────────────────────────────────


@app.post("/api/rich-text/apply-style")
def apply_style(request: ApplyStyleRequest) -> dict[str, Any]:
    rich_text = _load_rich_text(request.rich_text)
    try:
        styled = apply_style_to_range(rich_text, request.start, request.end, request.style)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid style: {exc}") from exc
    return _rich_text_response(styled)


@app.post("/api/rich-text/merge")
def merge_spans(request: RichTextRequest) -> dict[str, Any]:
    return _rich_text_response(merge_adjacent_spans(_load_rich_text(request.rich_text)))


@app.post("/api/rich-text/common-style")
def common_style(request: CommonStyleRequest) -> dict[str, Any]:
    rich_text = _load_rich_text(request.rich_text)
    try:
        value = get_range_style_value(rich_text, request.start, request.end, request.property)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"property": request.property, "value": value, "mixed": value == MIXED}


@app.post("/api/rich-text/from-html")
def from_html(request: FromHtmlRequest) -> dict[str, Any]:
    return _rich_text_response(rich_text_from_html(request.html))


@app.post("/api/rich-text/to-html")
def to_html(request: RichTextRequest) -> dict[str, str]:
    return {"html": rich_text_to_html(_load_rich_text(request.rich_text))}


@app.post("/api/rich-text/replace-text")
def replace_text(request: ReplaceTextRequest) -> dict[str, Any]:
    rich_text = _load_rich_text(request.rich_text)
    try:
        replaced = replace_plain_text(rich_text, request.text, request.default_style)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid default style: {exc}") from exc
    return _rich_text_response(replaced)


# ── Layout ────────────────────────────────────────────────────────────────────


@app.post("/api/layout/normalize")
def normalize_layout(request: LayoutRequest) -> dict[str, Any]:
    """Load stored layout JSON for the given canvas and return it normalized."""
    return _load_layout(request).to_config()


@app.post("/api/layout/validate")
def validate_layout(request: LayoutRequest) -> dict[str, Any]:
    return validate_layout_config(request.layout).model_dump(by_alias=True)


@app.post("/api/layout/defaults")
def default_layers(request: DefaultsRequest) -> dict[str, Any]:
    layers = build_default_layers(request.side, request.canvas())
    return {
        "side": request.side,
        "textLayers": [dump_layer(layer) for layer in layers],
        "protectedIds": list(PROTECTED_LAYER_IDS[request.side]),
    }


# ── Layers ────────────────────────────────────────────────────────────────────


def _measure_cached(text: str, font_size: float, font_family: str, font_weight: Any = None,
                    max_width: float | None = None, font_style: str | None = None) -> float:
    key = (text, font_size, font_family, str(font_weight), max_width, font_style)
    return text_width_cache.get_or_set(
        key,
        lambda: measure_text_width(text, font_size, font_family, font_weight, max_width, font_style),
    )


@app.post("/api/layers/measure-text")
def measure_text(request: MeasureTextRequest) -> dict[str, Any]:
    width = _measure_cached(
        request.text,
        request.font_size,
        request.font_family,
        request.font_weight,
        request.max_width,
        request.font_style,
    )
    return {"width": width}


@app.post("/api/layers/update")
def update_layer(request: LayerUpdateRequest) -> dict[str, Any]:
    """Apply one layer edit to a stored layout and return the normalized result."""
    layout = _load_layout(request)
    try:
        registry: LayerRegistry = layout.side(request.side)
    except KeyError as exc:
        raise HTTPException(status_code=400, detail=f"Layout has no {request.side} side.") from exc

    registry.text_measurer = _measure_cached
    try:
        updated = registry.update_layer(request.layer_id, request.updates)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid layer update: {exc}") from exc
    if updated is None:
        raise HTTPException(status_code=404, detail=f"Layer not found: {request.layer_id}")
    return {"layer": dump_layer(updated), "layout": layout.to_config()}


@app.post("/api/qr/resolve")
def resolve_qr_data(request: QRDataRequest) -> dict[str, Any]:
    data = process_qr_data_placeholder(request.qr_data, request.public_id)
    valid = validate_qr_data(data)
    return {
        "data": data,
        "valid": valid,
        "fitsCapacity": valid and fits_capacity(data, request.error_correction_level),
    }

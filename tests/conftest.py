"""
Shared fixtures for the certificate layout tests.

Provides span builders, registries on fixed canvases, a deterministic clock
and a fake text measurer so geometry assertions do not depend on font metrics.
"""
import pytest

from coordinates import CanvasSize
from layer_registry import LayerRegistry
from rich_text import TextSpan, dump_rich_text


# ── Canvases ─────────────────────────────────────────────────────────────

STANDARD = CanvasSize(1500, 2121)
SQUARE = CanvasSize(1000, 1000)
LANDSCAPE = CanvasSize(2000, 1000)


def spans(*parts):
    """Build rich text from (text, style-dict) pairs or bare strings."""
    result = []
    for part in parts:
        if isinstance(part, str):
            result.append(TextSpan(text=part))
        else:
            text, style = part
            result.append(TextSpan.model_validate({"text": text, **style}))
    return result


def dumped(rich_text):
    return dump_rich_text(rich_text)


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def fake_measure(text, font_size, font_family=None, font_weight=None, max_width=None, font_style=None):
    # 10px per character, ignoring font.
    return 10.0 * len(text)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return LayerRegistry(
        side="certificate",
        reference_size=STANDARD,
        clock=clock,
        text_measurer=fake_measure,
    )


@pytest.fixture
def square_registry(clock):
    return LayerRegistry(
        side="certificate",
        reference_size=SQUARE,
        clock=clock,
        text_measurer=fake_measure,
    )


@pytest.fixture
def protected_registry(clock):
    return LayerRegistry(
        side="certificate",
        reference_size=STANDARD,
        protected_ids=("name", "certificate_no", "issue_date", "description"),
        clock=clock,
        text_measurer=fake_measure,
    )


@pytest.fixture
def stored_layout():
    """A layout_config as the editor saves it, with one layer of each kind."""
    return {
        "certificate": {
            "textLayers": [
                {"id": "name", "xPercent": 0.5, "yPercent": 0.5, "fontSize": 48,
                 "fontFamily": "Arial", "fontWeight": "bold", "color": "#000000",
                 "textAlign": "center", "richText": [{"text": "Jane Doe"}]},
                {"id": "certificate_no", "xPercent": 0.1, "yPercent": 0.1, "fontSize": 26,
                 "fontFamily": "Arial", "fontWeight": "normal", "color": "#000000"},
                {"id": "issue_date", "xPercent": 0.7, "yPercent": 0.85, "fontSize": 26,
                 "fontFamily": "Arial", "fontWeight": "normal", "color": "#000000"},
            ],
            "photoLayers": [
                {"id": "photo_1", "type": "photo", "src": "https://cdn.example.com/logo.png",
                 "storagePath": "templates/logo.png", "xPercent": 0.5, "yPercent": 0.3,
                 "widthPercent": 0.2, "heightPercent": 0.1, "zIndex": 0,
                 "fitMode": "contain", "originalWidth": 400, "originalHeight": 200},
            ],
            "qrLayers": [
                {"id": "qr_1", "type": "qr_code", "qrData": "{{CERTIFICATE_URL}}",
                 "xPercent": 0.85, "yPercent": 0.85, "widthPercent": 0.1, "heightPercent": 0.1,
                 "zIndex": 50, "errorCorrectionLevel": "M"},
            ],
        },
        "canvas": {"width": 1500, "height": 2121},
        "version": "1.0",
        "lastSavedAt": "2024-05-01T10:00:00+00:00",
    }

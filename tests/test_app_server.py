"""
Tests for the layout API endpoints.
"""
import pytest
from fastapi.testclient import TestClient
from reportlab.pdfbase import pdfmetrics

import config
from app_server import app


@pytest.fixture
def client():
    return TestClient(app)


def _plain(layer):
    return "".join(span["text"] for span in layer["richText"])


# ══════════════════════════════════════════════════════════════════════════
# Service
# ══════════════════════════════════════════════════════════════════════════

class TestService:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_fonts(self, client):
        body = client.get("/api/fonts").json()
        assert body["count"] == len(body["custom_fonts"])

    def test_validation_error_shape(self, client):
        response = client.post("/api/rich-text/apply-style", json={"richText": [{"text": "x"}]})
        assert response.status_code == 422
        body = response.json()
        assert body["message"] == "Request validation failed."
        assert isinstance(body["detail"], list)


# ══════════════════════════════════════════════════════════════════════════
# Rich text
# ══════════════════════════════════════════════════════════════════════════

class TestRichTextEndpoints:

    def test_apply_style(self, client):
        response = client.post("/api/rich-text/apply-style", json={
            "richText": [{"text": "Hello World"}],
            "start": 2,
            "end": 5,
            "style": {"fontWeight": 700},
        })
        assert response.status_code == 200
        assert response.json() == {
            "richText": [{"text": "He"}, {"text": "llo", "fontWeight": 700}, {"text": " World"}],
            "plainText": "Hello World",
        }

    def test_invalid_rich_text(self, client):
        response = client.post("/api/rich-text/merge", json={"richText": [{"text": "x", "fontStyle": "oblique"}]})
        assert response.status_code == 400

    def test_invalid_style(self, client):
        response = client.post("/api/rich-text/apply-style", json={
            "richText": [{"text": "Hello"}],
            "style": {"textDecoration": "blink"},
        })
        assert response.status_code == 400

    def test_merge(self, client):
        response = client.post("/api/rich-text/merge", json={
            "richText": [{"text": "a", "color": "#000000"}, {"text": "b", "color": "#000000"}, {"text": ""}],
        })
        assert response.json()["richText"] == [{"text": "ab", "color": "#000000"}]

    def test_common_style(self, client):
        rich = [{"text": "a", "color": "#ff0000"}, {"text": "b", "color": "#00ff00"}]
        whole = client.post("/api/rich-text/common-style", json={"richText": rich, "property": "color"}).json()
        assert whole == {"property": "color", "value": "mixed", "mixed": True}
        first = client.post(
            "/api/rich-text/common-style",
            json={"richText": rich, "property": "color", "start": 0, "end": 1},
        ).json()
        assert first["value"] == "#ff0000"
        assert not first["mixed"]

    def test_common_style_unknown_property(self, client):
        response = client.post("/api/rich-text/common-style", json={"richText": [{"text": "a"}], "property": "size"})
        assert response.status_code == 400

    def test_from_html(self, client):
        body = client.post("/api/rich-text/from-html", json={"html": "Hello <b>World</b>"}).json()
        assert body["plainText"] == "Hello World"
        assert body["richText"][-1] == {"text": "World", "fontWeight": "bold"}

    def test_to_html(self, client):
        body = client.post("/api/rich-text/to-html", json={"richText": [{"text": "Hi", "color": "#00ff00"}]}).json()
        assert body == {"html": '<span style="color: #00ff00">Hi</span>'}

    def test_replace_text(self, client):
        body = client.post("/api/rich-text/replace-text", json={
            "richText": [{"text": "Bold", "fontWeight": "bold"}],
            "text": "Bold!",
        }).json()
        assert body["richText"] == [{"text": "Bold!", "fontWeight": "bold"}]


# ══════════════════════════════════════════════════════════════════════════
# Layouts
# ══════════════════════════════════════════════════════════════════════════

class TestLayoutEndpoints:

    def test_normalize_for_larger_canvas(self, client, stored_layout):
        response = client.post("/api/layout/normalize", json={"layout": stored_layout, "width": 3000, "height": 4242})
        assert response.status_code == 200
        body = response.json()
        assert body["canvas"] == {"width": 3000, "height": 4242}
        qr = body["certificate"]["qrLayers"][0]
        assert qr["width"] == qr["height"] == 300

    def test_normalize_needs_both_dimensions(self, client, stored_layout):
        response = client.post("/api/layout/normalize", json={"layout": stored_layout, "width": 3000})
        assert response.status_code == 400

    def test_normalize_rejects_bad_layer(self, client, stored_layout):
        stored_layout["certificate"]["photoLayers"][0]["fitMode"] = "stretch"
        response = client.post("/api/layout/normalize", json={"layout": stored_layout})
        assert response.status_code == 400

    def test_validate(self, client, stored_layout):
        body = client.post("/api/layout/validate", json={"layout": stored_layout}).json()
        assert body == {"isValid": True, "missingFields": [], "errors": []}

    def test_validate_reports_missing(self, client):
        body = client.post("/api/layout/validate", json={"layout": {"certificate": {"textLayers": []}}}).json()
        assert not body["isValid"]
        assert body["missingFields"] == ["name", "certificate_no", "issue_date"]

    def test_defaults(self, client):
        body = client.post("/api/layout/defaults", json={"side": "score", "width": 3000, "height": 2000}).json()
        assert body["protectedIds"] == ["issue_date", "description"]
        assert [layer["id"] for layer in body["textLayers"]] == ["name", "issue_date", "description"]
        assert body["textLayers"][0]["x"] == 1500


# ══════════════════════════════════════════════════════════════════════════
# Layers and QR
# ══════════════════════════════════════════════════════════════════════════

class TestLayerEndpoints:

    def test_measure_text(self, client):
        body = client.post("/api/layers/measure-text", json={"text": "Hello", "fontSize": 12}).json()
        assert body["width"] == pytest.approx(pdfmetrics.stringWidth("Hello", "Helvetica", 12))

    def test_update_qr_stays_square(self, client, stored_layout):
        response = client.post("/api/layers/update", json={
            "layout": stored_layout,
            "layerId": "qr_1",
            "updates": {"width": 300},
        })
        assert response.status_code == 200
        body = response.json()
        assert (body["layer"]["width"], body["layer"]["height"]) == (300, 300)
        assert body["layout"]["certificate"]["qrLayers"][0]["widthPercent"] == pytest.approx(0.2)

    def test_update_text(self, client, stored_layout):
        body = client.post("/api/layers/update", json={
            "layout": stored_layout,
            "layerId": "name",
            "updates": {"text": "John Smith"},
        }).json()
        assert _plain(body["layer"]) == "John Smith"

    def test_update_unknown_layer(self, client, stored_layout):
        response = client.post("/api/layers/update", json={
            "layout": stored_layout,
            "layerId": "missing",
            "updates": {"visible": False},
        })
        assert response.status_code == 404

    def test_update_missing_side(self, client, stored_layout):
        response = client.post("/api/layers/update", json={
            "layout": stored_layout,
            "side": "score",
            "layerId": "name",
            "updates": {"visible": False},
        })
        assert response.status_code == 400

    def test_resolve_qr(self, client, monkeypatch):
        monkeypatch.setattr(config, "PUBLIC_BASE_URL", "https://certs.example.org")
        body = client.post("/api/qr/resolve", json={"qrData": "{{CERTIFICATE_URL}}", "publicId": "abc"}).json()
        assert body == {"data": "https://certs.example.org/certificate/abc", "valid": True, "fitsCapacity": True}

    def test_resolve_qr_too_long(self, client):
        body = client.post("/api/qr/resolve", json={"qrData": "x" * 2001, "publicId": "abc"}).json()
        assert not body["valid"]
        assert not body["fitsCapacity"]

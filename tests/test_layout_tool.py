"""
Tests for the layout command-line tool.
"""
import json

import pytest
from PIL import Image

from layout_tool import main


@pytest.fixture
def layout_file(tmp_path, stored_layout):
    path = tmp_path / "layout.json"
    path.write_text(json.dumps(stored_layout), encoding="utf-8")
    return path


@pytest.fixture
def template_image(tmp_path):
    path = tmp_path / "template.png"
    Image.new("RGB", (3000, 4242), "white").save(path)
    return path


class TestNormalize:

    def test_writes_output_for_image_canvas(self, layout_file, template_image, tmp_path, capsys):
        output = tmp_path / "out" / "normalized.json"
        assert main(["--layout", str(layout_file), "--image", str(template_image), "--output", str(output)]) == 0
        assert "[OK] Wrote JSON" in capsys.readouterr().out
        data = json.loads(output.read_text(encoding="utf-8"))
        assert data["canvas"] == {"width": 3000, "height": 4242}
        assert data["certificate"]["qrLayers"][0]["width"] == 300

    def test_prints_to_stdout(self, layout_file, capsys):
        assert main(["--layout", str(layout_file), "--width", "1500", "--height", "2121"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["certificate"]["textLayers"][0]["id"] == "name"

    def test_width_without_height(self, layout_file, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["--layout", str(layout_file), "--width", "1500"])
        assert excinfo.value.code == 2
        assert "--width and --height must be given together" in capsys.readouterr().err

    def test_image_and_width_conflict(self, layout_file, template_image):
        with pytest.raises(SystemExit) as excinfo:
            main(["--layout", str(layout_file), "--image", str(template_image), "--width", "10", "--height", "10"])
        assert excinfo.value.code == 2

    def test_layout_required(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main([])
        assert excinfo.value.code == 2
        assert "--layout is required" in capsys.readouterr().err


class TestValidate:

    def test_valid_layout(self, layout_file, capsys):
        assert main(["--layout", str(layout_file), "--validate"]) == 0
        assert "[OK] Layout is valid" in capsys.readouterr().out

    def test_invalid_layout(self, tmp_path, stored_layout, capsys):
        stored_layout["certificate"]["textLayers"] = stored_layout["certificate"]["textLayers"][:1]
        path = tmp_path / "broken.json"
        path.write_text(json.dumps(stored_layout), encoding="utf-8")
        assert main(["--layout", str(path), "--validate"]) == 1
        out = capsys.readouterr().out
        assert "[WARN] Missing required layer: certificate_no" in out
        assert "[WARN] Missing required layer: issue_date" in out


class TestInspect:

    def test_defaults(self, capsys):
        assert main(["--defaults", "score"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert [layer["id"] for layer in data["textLayers"]] == ["name", "issue_date", "description"]

    def test_list(self, layout_file, capsys):
        assert main(["--layout", str(layout_file), "--list"]) == 0
        out = capsys.readouterr().out
        assert "Canvas: 1500 x 2121 pixels" in out
        assert "[certificate] 5 layer(s)" in out
        lines = [line for line in out.splitlines() if " | " in line]
        # Photos draw first, then QR codes, then text.
        assert [line.split(" | ")[2] for line in lines] == ["photo_1", "qr_1", "name", "certificate_no", "issue_date"]

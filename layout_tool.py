import argparse
import json
import logging
import sys
from pathlib import Path

from PIL import Image

import config
from coordinates import CanvasSize
from layers import PhotoLayer, QRCodeLayer, TextLayer, dump_layer
from template_layout import TemplateLayout, build_default_layers, validate_layout_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Normalize, validate and inspect certificate template layouts."
    )
    parser.add_argument("--layout", help="Path to a stored layout_config JSON file.")
    parser.add_argument("--output", help="Write the normalized layout JSON here.")
    parser.add_argument("--image", help="Certificate template image; its pixel size is the reference canvas.")
    parser.add_argument("--score-image", help="Score template image for dual templates.")
    parser.add_argument("--width", type=int, help="Reference canvas width in pixels.")
    parser.add_argument("--height", type=int, help="Reference canvas height in pixels.")
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Check the layout and exit non-zero when it is invalid.",
    )
    parser.add_argument(
        "--defaults",
        choices=("certificate", "score"),
        help="Print the default text layers for one side instead of loading a layout.",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print one line per layer in drawing order.",
    )
    return parser


def image_size(path: Path) -> CanvasSize:
    with Image.open(path) as img:
        width, height = img.size
    return CanvasSize(width, height)


def reference_size(args: argparse.Namespace) -> CanvasSize | None:
    if args.image and (args.width or args.height):
        raise ValueError("Use either --image or --width/--height, not both.")
    if args.image:
        return image_size(Path(args.image))
    if args.width is None and args.height is None:
        return None
    if args.width is None or args.height is None:
        raise ValueError("--width and --height must be given together.")
    return CanvasSize(args.width, args.height)


def describe_layer(idx: int, layer) -> str:
    if isinstance(layer, TextLayer):
        text = layer.plain_text or layer.default_text or ""
        if len(text) > 30:
            text = text[:27] + "..."
        detail = f"'{text}' | font={layer.font_family} size={layer.font_size} align={layer.text_align}"
    elif isinstance(layer, PhotoLayer):
        detail = f"{layer.width}x{layer.height} fit={layer.fit_mode} z={layer.z_index}"
    elif isinstance(layer, QRCodeLayer):
        detail = f"{layer.width}x{layer.height} ecl={layer.error_correction_level} z={layer.z_index}"
    else:
        raise TypeError(f"Unsupported layer type: {type(layer).__name__}")
    hidden = "" if layer.visible else " (hidden)"
    return (
        f"{idx:03d} | {layer.type:<7} | {layer.id} | pos=({layer.x},{layer.y}) "
        f"pct=({layer.x_percent:.4f},{layer.y_percent:.4f}) | {detail}{hidden}"
    )


def write_json(payload: dict, output: str | None) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if not output:
        print(text)
        return
    output_path = Path(output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(text, encoding="utf-8")
    print(f"[OK] Wrote JSON: {output_path}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=config.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")

    try:
        ref = reference_size(args)
    except ValueError as exc:
        parser.error(str(exc))

    if args.defaults:
        layers = build_default_layers(args.defaults, ref)
        write_json({"textLayers": [dump_layer(layer) for layer in layers]}, args.output)
        return 0

    if not args.layout:
        parser.error("--layout is required unless --defaults is given.")

    layout_path = Path(args.layout)
    data = json.loads(layout_path.read_text(encoding="utf-8"))

    if args.validate:
        result = validate_layout_config(data)
        for field in result.missing_fields:
            print(f"[WARN] Missing required layer: {field}")
        for error in result.errors:
            print(f"[WARN] {error}")
        if result.is_valid:
            print(f"[OK] Layout is valid: {layout_path}")
            return 0
        return 1

    score_ref = image_size(Path(args.score_image)) if args.score_image else None
    layout = TemplateLayout.from_config(data, ref, score_ref)

    if args.list:
        print(f"Layout: {layout_path}")
        print(f"Canvas: {layout.canvas.width} x {layout.canvas.height} pixels")
        sides = [("certificate", layout.certificate)]
        if layout.score is not None:
            sides.append(("score", layout.score))
        for side, registry in sides:
            print(f"[{side}] {len(registry)} layer(s)")
            for idx, layer in enumerate(registry.render_order(), start=1):
                print(describe_layer(idx, layer))
        return 0

    write_json(layout.to_config(), args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Text measurement for layer layout, backed by reportlab font metrics.

CSS-style font descriptions from the editor (family, weight, style) are
resolved onto a registered reportlab font; unknown families fall back to
Helvetica so a width can always be computed.
"""

from __future__ import annotations

import logging
from pathlib import Path

from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont

logger = logging.getLogger(__name__)

_BASE14_FONTS = {
    "Courier",
    "Courier-Bold",
    "Courier-Oblique",
    "Courier-BoldOblique",
    "Helvetica",
    "Helvetica-Bold",
    "Helvetica-Oblique",
    "Helvetica-BoldOblique",
    "Times-Roman",
    "Times-Bold",
    "Times-Italic",
    "Times-BoldItalic",
    "Symbol",
    "ZapfDingbats",
}

# Common web font families mapped onto their closest base-14 family.
_CSS_FAMILY_ALIASES = {
    "arial": "Helvetica",
    "helvetica": "Helvetica",
    "sansserif": "Helvetica",
    "verdana": "Helvetica",
    "timesnewroman": "Times-Roman",
    "times": "Times-Roman",
    "georgia": "Times-Roman",
    "serif": "Times-Roman",
    "couriernew": "Courier",
    "courier": "Courier",
    "monospace": "Courier",
}

_EMPHASIS_VARIANTS = {
    # base: (regular, bold, italic, bold-italic)
    "Helvetica": ("Helvetica", "Helvetica-Bold", "Helvetica-Oblique", "Helvetica-BoldOblique"),
    "Times-Roman": ("Times-Roman", "Times-Bold", "Times-Italic", "Times-BoldItalic"),
    "Courier": ("Courier", "Courier-Bold", "Courier-Oblique", "Courier-BoldOblique"),
}

_warned_fonts: set[str] = set()


def _normalize_font_name(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


def _font_is_available(font_name: str) -> bool:
    if font_name in _BASE14_FONTS:
        return True
    try:
        pdfmetrics.getFont(font_name)
        return True
    except Exception:
        return False


def resolve_font_name(font_name: str | None, fallback_font: str = "Helvetica") -> str:
    if not font_name:
        return fallback_font
    if _font_is_available(font_name):
        return font_name

    normalized = _normalize_font_name(font_name)
    if normalized in _CSS_FAMILY_ALIASES:
        return _CSS_FAMILY_ALIASES[normalized]

    # Try case/spacing-insensitive match against registered fonts.
    for candidate in list(pdfmetrics.getRegisteredFontNames()) + sorted(_BASE14_FONTS):
        if _normalize_font_name(candidate) == normalized and _font_is_available(candidate):
            return candidate

    if font_name not in _warned_fonts:
        _warned_fonts.add(font_name)
        logger.warning("Font '%s' is unavailable. Falling back to '%s'.", font_name, fallback_font)
    return fallback_font


def is_bold_weight(font_weight: int | str | None) -> bool:
    if font_weight is None:
        return False
    value = str(font_weight).strip().lower()
    if value in {"bold", "bolder"}:
        return True
    return value.isdigit() and int(value) >= 600


def _decompose_font_style(font_name: str) -> tuple[str, bool, bool]:
    for base, (regular, bold, italic, bold_italic) in _EMPHASIS_VARIANTS.items():
        if font_name == bold_italic:
            return (base, True, True)
        if font_name == bold:
            return (base, True, False)
        if font_name == italic:
            return (base, False, True)
        if font_name == regular:
            return (base, False, False)
    return (font_name, False, False)


def apply_emphasis_to_font(base_font_name: str, bold: bool, italic: bool) -> str:
    base_font, base_bold, base_italic = _decompose_font_style(base_font_name)
    eff_bold = base_bold or bold
    eff_italic = base_italic or italic

    variants = _EMPHASIS_VARIANTS.get(base_font)
    if variants is None:
        # For custom fonts, keep the same family and ignore synthetic bold/italic.
        return base_font_name
    return variants[(2 if eff_italic else 0) + (1 if eff_bold else 0)]


def font_for_style(
    font_family: str | None,
    font_weight: int | str | None = None,
    font_style: str | None = None,
) -> str:
    """Registered reportlab font name for a CSS family/weight/style triple."""
    base = resolve_font_name(font_family)
    return apply_emphasis_to_font(base, is_bold_weight(font_weight), font_style == "italic")


def wrap_text_to_lines(font_name: str, text: str, size: float, max_width: float) -> list[str]:
    """Break *text* into lines that each fit within *max_width* at *size*.

    Preserves explicit newlines and performs greedy word-wrap within each
    paragraph. A single word wider than max_width stays on its own line.
    """
    result: list[str] = []
    for paragraph in text.split("\n"):
        if not paragraph:
            result.append("")
            continue
        current = ""
        for word in paragraph.split(" "):
            candidate = f"{current} {word}" if current else word
            if pdfmetrics.stringWidth(candidate, font_name, size) <= max_width or not current:
                current = candidate
            else:
                result.append(current)
                current = word
        if current:
            result.append(current)
    return result if result else [""]


def measure_text_width(
    text: str,
    font_size: float,
    font_family: str | None,
    font_weight: int | str | None = None,
    max_width: float | None = None,
    font_style: str | None = None,
) -> float:
    """Rendered width of *text*; wrapped at *max_width* when one is given."""
    font_name = font_for_style(font_family, font_weight, font_style)
    if max_width and max_width > 0:
        lines = wrap_text_to_lines(font_name, text, font_size, max_width)
        widest = max(pdfmetrics.stringWidth(line, font_name, font_size) for line in lines)
        return min(widest, float(max_width))
    lines = text.split("\n")
    return max(pdfmetrics.stringWidth(line, font_name, font_size) for line in lines)


def realign_x(x: float, old_align: str, new_align: str, text_width: float) -> float:
    """Anchor x for *new_align* that keeps the text's visual centre in place."""
    half = text_width / 2
    center = x
    if old_align == "right":
        center = x - half
    elif old_align in ("left", "justify"):
        center = x + half
    if new_align == "right":
        return center + half
    if new_align in ("left", "justify"):
        return center - half
    return center


def register_fonts_from_directory(fonts_dir: Path) -> dict[str, str]:
    """Auto-register all TTF/OTF fonts from a directory.

    Returns a dict mapping font names (file stems) to file paths.
    """
    font_map: dict[str, str] = {}
    if not fonts_dir.exists():
        return font_map

    for pattern in ("*.ttf", "*.otf"):
        for font_file in sorted(fonts_dir.glob(pattern)):
            try:
                pdfmetrics.registerFont(TTFont(font_file.stem, str(font_file)))
            except Exception as exc:
                logger.warning("Failed to register %s: %s", font_file.name, exc)
                continue
            font_map[font_file.stem] = str(font_file)
            logger.info("Registered font: %s", font_file.stem)
    return font_map

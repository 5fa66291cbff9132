"""System themes seeded by scripts/init_db.py. Keyed by slug so reseeding updates in place."""
from __future__ import annotations

from typing import Any


def _theme(
    bg: str,
    text: str,
    button_bg: str,
    button_text: str,
    *,
    radius: str = "8px",
    font: str = "Inter",
    gradient: tuple[str, str] | None = None,
    border: str | None = None,
) -> dict[str, Any]:
    return {
        "background": {
            "type": "gradient" if gradient else "color",
            "color": bg,
            "gradient_start": gradient[0] if gradient else bg,
            "gradient_end": gradient[1] if gradient else bg,
        },
        "text_color": text,
        "button": {
            "background_color": button_bg,
            "text_color": button_text,
            "border_radius": radius,
            "border_width": "2px" if border else "0",
            "border_color": border,
        },
        "font_family": font,
    }


# (slug, name, category, premium, settings)
SYSTEM_THEMES: list[tuple[str, str, str, bool, dict[str, Any]]] = [
    ("default", "Default", "minimal", False, _theme("#ffffff", "#000000", "#000000", "#ffffff")),
    ("midnight", "Midnight", "modern", False, _theme("#0f172a", "#f8fafc", "#6366f1", "#ffffff", radius="12px")),
    ("paper", "Paper", "classic", False, _theme("#faf7f0", "#292524", "#292524", "#faf7f0", radius="4px", font="Merriweather")),
    ("ocean", "Ocean", "vibrant", False,
     _theme("#0ea5e9", "#ffffff", "#ffffff", "#0369a1", radius="9999px", gradient=("#0ea5e9", "#6366f1"))),
    ("sunset", "Sunset", "vibrant", True,
     _theme("#f97316", "#ffffff", "#ffffff", "#c2410c", radius="16px", font="Poppins", gradient=("#f97316", "#db2777"))),
    ("studio", "Studio", "professional", False, _theme("#f3f4f6", "#111827", "#111827", "#f9fafb", radius="4px", font="Roboto")),
    ("outline", "Outline", "minimal", False,
     _theme("#ffffff", "#111827", "#ffffff", "#111827", radius="8px", border="#111827")),
    ("velvet", "Velvet", "elegant", True,
     _theme("#3b0764", "#f5f3ff", "#f5f3ff", "#3b0764", radius="12px", font="Playfair Display", gradient=("#3b0764", "#831843"))),
    ("neon", "Neon", "bold", True, _theme("#000000", "#22d3ee", "#22d3ee", "#000000", radius="0", font="Source Code Pro")),
    ("canvas", "Canvas", "creative", False, _theme("#fef3c7", "#78350f", "#b45309", "#fffbeb", radius="16px", font="Lato")),
]

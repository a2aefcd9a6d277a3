"""Design-data helpers shared by the MCP tools.

Pure functions over Figma document trees (as returned by GET /files/:key)
plus the payload conversions the plugin expects (colours as 0-1 RGB floats).
"""

import json
import re

_HEX_RE = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)

CONTAINER_TYPES = ("FRAME", "GROUP", "COMPONENT")

DEVICE_SIZES = {
    "mobile": {"width": 375, "height": 812},
    "tablet": {"width": 768, "height": 1024},
    "desktop": {"width": 1440, "height": 900},
    "watch": {"width": 184, "height": 224},
}

STYLE_PRESETS = {
    "modern": {
        "primaryColor": "#0066FF",
        "backgroundColor": "#FFFFFF",
        "textColor": "#1A1A1A",
        "borderRadius": 12,
        "spacing": 16,
    },
    "minimal": {
        "primaryColor": "#000000",
        "backgroundColor": "#FFFFFF",
        "textColor": "#000000",
        "borderRadius": 4,
        "spacing": 24,
    },
    "corporate": {
        "primaryColor": "#003D82",
        "backgroundColor": "#F5F7FA",
        "textColor": "#2C3E50",
        "borderRadius": 6,
        "spacing": 20,
    },
}

# Thresholds behind analyze_design() suggestions
MAX_CORE_COLORS = 10
MAX_SPACING_VALUES = 8


def hex_to_rgb(hex_color: str) -> dict:
    """'#FF8000' -> {'r': 1.0, 'g': 0.50..., 'b': 0.0}; unparseable input is black."""
    match = _HEX_RE.match(hex_color or "")
    if not match:
        return {"r": 0, "g": 0, "b": 0}
    r, g, b = (int(part, 16) / 255 for part in match.groups())
    return {"r": r, "g": g, "b": b}


def rgb_to_hex(r: float, g: float, b: float) -> str:
    return "#" + "".join(f"{round(c * 255):02X}" for c in (r, g, b))


def extract_structure(node: dict, depth: int = 0, max_depth: int = 3) -> dict:
    if depth > max_depth:
        return {"name": node.get("name"), "type": node.get("type")}

    structure = {"id": node.get("id"), "name": node.get("name"), "type": node.get("type")}
    if node.get("type") in CONTAINER_TYPES:
        box = node.get("absoluteBoundingBox") or {}
        structure["size"] = {"width": box.get("width"), "height": box.get("height")}
    if node.get("children") and depth < max_depth:
        structure["children"] = [
            extract_structure(child, depth + 1, max_depth) for child in node["children"]
        ]
    return structure


def _walk(node: dict):
    yield node
    for child in node.get("children") or []:
        yield from _walk(child)


def extract_colors(document: dict) -> list[dict]:
    seen = {}
    for node in _walk(document):
        for fill in node.get("fills") or []:
            if fill.get("type") != "SOLID" or fill.get("visible") is False:
                continue
            color = fill.get("color") or {}
            entry = {
                "hex": rgb_to_hex(color.get("r", 0), color.get("g", 0), color.get("b", 0)),
                "opacity": fill.get("opacity") or color.get("a", 1),
            }
            seen.setdefault(json.dumps(entry, sort_keys=True), entry)
    return list(seen.values())


def extract_typography(document: dict) -> list[dict]:
    seen = {}
    for node in _walk(document):
        style = node.get("style")
        if node.get("type") != "TEXT" or not style:
            continue
        entry = {
            "family": style.get("fontFamily"),
            "size": style.get("fontSize"),
            "weight": style.get("fontWeight"),
            "lineHeight": style.get("lineHeightPx"),
        }
        seen.setdefault(json.dumps(entry, sort_keys=True), entry)
    return list(seen.values())


def extract_components(document: dict) -> list[dict]:
    return [
        {
            "id": node.get("id"),
            "name": node.get("name"),
            "type": node.get("type"),
            "description": node.get("description") or "",
        }
        for node in _walk(document)
        if node.get("type") in ("COMPONENT", "COMPONENT_SET")
    ]


def extract_spacing(document: dict) -> list[float]:
    spacings = set()
    for node in _walk(document):
        if node.get("type") != "FRAME" or not node.get("layoutMode"):
            continue
        for key in ("itemSpacing", "paddingLeft", "paddingRight", "paddingTop", "paddingBottom"):
            if node.get(key):
                spacings.add(node[key])
    return sorted(spacings)


def read_design_system(document: dict) -> dict:
    return {
        "colors": extract_colors(document),
        "typography": extract_typography(document),
        "components": extract_components(document),
        "spacing": extract_spacing(document),
    }


def generate_layout_plan(requirements: str, style: str = "modern", device: str = "mobile") -> dict:
    """Device frame and style tokens for BUILD_SCREEN; unknown styles fall back to modern."""
    return {
        "device": DEVICE_SIZES.get(device, DEVICE_SIZES["mobile"]),
        "style": STYLE_PRESETS.get(style, STYLE_PRESETS["modern"]),
        "requirements": requirements,
    }


def analyze_design(design_system: dict, focus: str = "all") -> dict:
    suggestions = []
    if focus in ("all", "colors"):
        colors = design_system.get("colors", [])
        if len(colors) > MAX_CORE_COLORS:
            suggestions.append({
                "category": "colors",
                "severity": "medium",
                "message": (f"You're using {len(colors)} colors. Consider reducing to "
                            "5-8 core colors for better consistency."),
            })
    if focus in ("all", "spacing"):
        spacing = design_system.get("spacing", [])
        if len(spacing) > MAX_SPACING_VALUES:
            suggestions.append({
                "category": "spacing",
                "severity": "low",
                "message": (f"{len(spacing)} different spacing values detected. "
                            "Consider using an 8px grid system."),
            })
    penalty = {"medium": 20, "low": 10}
    score = max(0, 100 - sum(penalty[s["severity"]] for s in suggestions))
    return {"focus": focus, "suggestions": suggestions, "score": score}

from __future__ import annotations

# Core surfaces
VS_BG = "#1E1E1E"
VS_SURFACE = "#252526"
VS_SURFACE_ALT = "#2D2D30"
VS_CARD = "#2F2F33"

# Borders and outlines
VS_BORDER = "#3C3C3C"
VS_DIVIDER = "#2F2F2F"

# Accent colors
VS_ACCENT = "#0E639C"
VS_ACCENT_HOVER = "#1177BB"
VS_DANGER = "#F26D6D"
VS_DANGER_HOVER = "#D95A5A"

# Text colors
VS_TEXT = "#F3F3F3"
VS_TEXT_MUTED = "#9DA5B4"

# Status colors
VS_SUCCESS = "#6A9955"
VS_WARNING = "#F48771"
VS_INFO = "#3794FF"

TONE_COLORS = {
    "info": VS_TEXT_MUTED,
    "success": VS_SUCCESS,
    "warning": VS_WARNING,
}

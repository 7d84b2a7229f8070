# visualization/__init__.py
"""
Visualization modules for the ROV vision system.
Handles the text and shape overlays drawn on processed frames.
"""

from .hud_overlay import COLORS, draw_fps_text, draw_error_text, draw_detection

__version__ = "1.0.0"
__all__ = [
    "COLORS",
    "draw_fps_text",
    "draw_error_text",
    "draw_detection"
]

# visualization/hud_overlay.py
import cv2
import numpy as np
from typing import List, Sequence, Tuple

from rov_vision_system.config.settings import DETECTION_COLORS

# Colors (BGR format)
COLORS = {
    'text': (200, 200, 200),       # Grey
    'error': (0, 0, 250),          # Red
    'notice': (250, 100, 100),     # Light blue
    'placeholder': (5, 10, 15),    # Near black
    'label_text': (0, 0, 0),       # Black
    'contour': (50, 200, 50),      # Green
    'centroid': (255, 255, 255),   # White
    'line_path': (255, 0, 0),      # Blue
}

HUD_FONT = cv2.FONT_HERSHEY_DUPLEX
HUD_SCALE = 0.65
STATUS_SCALE = 0.40
LABEL_FONT = cv2.FONT_HERSHEY_SIMPLEX
LABEL_SCALE = 0.5


def draw_fps_text(frame: np.ndarray, camera_fps: int, algorithm_fps: int):
    """Stamp capture and processing rates in the lower right"""
    rows = frame.shape[0]
    cv2.putText(frame, f"Camera FPS: {camera_fps}", (420, rows - 40),
                HUD_FONT, HUD_SCALE, COLORS['text'], 1, cv2.LINE_AA)
    cv2.putText(frame, f"Algorithm FPS: {algorithm_fps}", (420, rows - 20),
                HUD_FONT, HUD_SCALE, COLORS['text'], 1, cv2.LINE_AA)


def draw_stereo_fps_text(frame: np.ndarray, left_fps: int, right_fps: int, stereo_fps: int):
    rows = frame.shape[0]
    cv2.putText(frame, f"Left Camera FPS: {left_fps}", (400, rows - 60),
                HUD_FONT, HUD_SCALE, COLORS['text'], 1, cv2.LINE_AA)
    cv2.putText(frame, f"Right Camera FPS: {right_fps}", (400, rows - 40),
                HUD_FONT, HUD_SCALE, COLORS['text'], 1, cv2.LINE_AA)
    cv2.putText(frame, f"Stereo FPS: {stereo_fps}", (450, rows - 20),
                HUD_FONT, HUD_SCALE, COLORS['text'], 1, cv2.LINE_AA)


def draw_error_text(frame: np.ndarray, message: str = "Image Processing ERROR"):
    """Diagnostic overlay drawn in place of normal output"""
    cv2.putText(frame, message, (280, frame.shape[0] - 440),
                HUD_FONT, HUD_SCALE, COLORS['error'], 1, cv2.LINE_AA)


def draw_status_text(frame: np.ndarray, message: str):
    """Pose search status in the upper left"""
    cv2.putText(frame, f"PNP Status: {message}", (50, frame.shape[0] - 440),
                HUD_FONT, STATUS_SCALE, COLORS['error'], 1, cv2.LINE_AA)


def draw_detection(frame: np.ndarray, box: Tuple[int, int, int, int], label: str, class_id: int):
    """Bounding box with a filled label tab above it"""
    x, y, w, h = box
    color = DETECTION_COLORS[class_id % len(DETECTION_COLORS)]
    cv2.rectangle(frame, (x, y), (x + w, y + h), color, 3)
    cv2.rectangle(frame, (x, y - 20), (x + w, y), color, cv2.FILLED)
    cv2.putText(frame, label, (x, y - 5), LABEL_FONT, LABEL_SCALE, COLORS['label_text'])


def draw_rotated_rect(frame: np.ndarray, corners: np.ndarray, color: Tuple[int, int, int],
                      thickness: int = 2):
    """Outline the four corners of a cv2.minAreaRect"""
    points = [(int(x), int(y)) for x, y in np.round(corners)]
    for i in range(4):
        cv2.line(frame, points[i], points[(i + 1) % 4], color, thickness)


def draw_polyline(frame: np.ndarray, points: Sequence[Tuple[int, int]],
                  color: Tuple[int, int, int] = COLORS['line_path'], thickness: int = 2):
    for start, end in zip(points, points[1:]):
        cv2.line(frame, start, end, color, thickness)


def draw_notice(frame: np.ndarray, lines: List[str]):
    """Explanatory text block for disabled features"""
    rows, cols = frame.shape[:2]
    anchors = [(cols // 12, rows // 4), (cols // 12, rows // 3)]
    for text, anchor in zip(lines, anchors):
        cv2.putText(frame, text, anchor, HUD_FONT, HUD_SCALE, COLORS['notice'], 1, cv2.LINE_AA)

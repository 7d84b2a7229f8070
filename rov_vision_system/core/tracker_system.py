# core/tracker_system.py
import cv2
import numpy as np
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple
from loguru import logger

from rov_vision_system.config.settings import (
    BLUR_RADIUS, KERNEL, OBJECT_REFERENCE_POINTS, PROCESS_STARTUP_DELAY,
    CameraIntrinsics, TrackingConfig,
)
from rov_vision_system.core.config_store import PipelineParameters
from rov_vision_system.core.detector_engine import Detection, DetectionEngine
from rov_vision_system.core.frame_buffer import SharedFrame
from rov_vision_system.core.state_machine import ModeController, TrackingMode
from rov_vision_system.exceptions import PoseEstimationError
from rov_vision_system.utils.logger import RateLimitedLogger
from rov_vision_system.utils.performance import FrameTimer
from rov_vision_system.visualization.hud_overlay import (
    COLORS, draw_detection, draw_error_text, draw_fps_text, draw_notice,
    draw_polyline, draw_rotated_rect, draw_status_text,
)

TRENCH_SENTINEL = (0, -1)

RotatedRect = Tuple[Tuple[float, float], Tuple[float, float], float]


@dataclass
class ColorProfile:
    name: str
    lower: Tuple[int, int, int]     # HSV
    upper: Tuple[int, int, int]     # HSV
    overlay: Tuple[int, int, int]   # BGR


COLOR_PROFILES: List[ColorProfile] = [
    ColorProfile("lightblue", (91, 219, 118), (255, 255, 157), (255, 156, 64)),
    ColorProfile("blue", (100, 230, 45), (255, 255, 95), (219, 4, 12)),
    ColorProfile("yellow", (0, 228, 90), (68, 255, 163), (0, 242, 255)),
    ColorProfile("green", (57, 230, 58), (71, 255, 211), (11, 117, 25)),
    ColorProfile("purple", (128, 70, 0), (255, 201, 60), (255, 0, 195)),
    ColorProfile("orange", (0, 177, 15), (61, 255, 90), (9, 112, 222)),
]


@dataclass
class TapeObject:
    color: str
    rect: RotatedRect

    @property
    def center(self) -> Tuple[float, float]:
        return self.rect[0]

    @property
    def corners(self) -> np.ndarray:
        return cv2.boxPoints(self.rect)


class PoseStatus(Enum):
    FOUND = "found match!"
    SEARCHING = "searching..."
    UNSOLVABLE = "point data unsolvable..."


@dataclass
class PoseResult:
    values: List[float]     # x, y, z, roll, pitch, yaw
    status: PoseStatus


@dataclass
class TrackingResult:
    """Output of one processing iteration. Schema of values depends on mode."""
    mode: TrackingMode
    values: List[float] = field(default_factory=list)
    target_center_x: int = 0
    target_center_y: int = 0
    tape_order: List[str] = field(default_factory=list)
    detections: List[Detection] = field(default_factory=list)
    pose: Optional[PoseResult] = None


class LineOrientation:
    """Strip direction for line following. Flips when too few strips match."""

    def __init__(self, vertical: bool = False):
        self.vertical = vertical

    def update(self, points_found: int):
        if points_found < 3:
            self.vertical = not self.vertical


def _half(value: float) -> int:
    """Integer halving that truncates toward zero"""
    return int(value / 2)


def blurred_hsv(frame: np.ndarray) -> np.ndarray:
    hsv = cv2.cvtColor(frame, cv2.COLOR_BGR2HSV)
    return cv2.blur(hsv, (BLUR_RADIUS, BLUR_RADIUS))


def hsv_mask(frame: np.ndarray, lower: Sequence[int], upper: Sequence[int]) -> np.ndarray:
    """Threshold in HSV then open the mask to drop speckles"""
    filtered = cv2.inRange(blurred_hsv(frame), tuple(lower), tuple(upper))
    mask = cv2.erode(filtered, KERNEL)
    return cv2.dilate(mask, KERNEL)


def _vertical_extremes(hull: np.ndarray) -> List[int]:
    """[x_top, y_top, x_bottom, y_bottom] of a hull"""
    points = hull.reshape(-1, 2)
    top = points[int(np.argmin(points[:, 1]))]
    bottom = points[int(np.argmax(points[:, 1]))]
    return [int(top[0]), int(top[1]), int(bottom[0]), int(bottom[1])]


def track_trench(frame: np.ndarray, annotated: np.ndarray, params: PipelineParameters,
                 previous_target: Tuple[int, int] = TRENCH_SENTINEL,
                 min_line_length: int = 50) -> Tuple[Tuple[int, int], np.ndarray]:
    """
    Find the channel between the two tallest blobs and return the horizontal
    offset of its center line from screen center plus the channel width.
    """
    mask = hsv_mask(frame, params.hsv_lower, params.hsv_upper)
    contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    if len(contours) < 2:
        return TRENCH_SENTINEL, mask

    hulls = sorted((cv2.convexHull(c) for c in contours),
                   key=lambda h: abs(cv2.contourArea(h)), reverse=True)
    hulls = [h for h in hulls
             if params.contour_area_min <= cv2.contourArea(h) <= params.contour_area_max]
    if len(hulls) <= 2:
        return previous_target, mask

    cv2.polylines(annotated, hulls, True, (255, 255, 210), 1)

    lines = [_vertical_extremes(h) for h in hulls]
    screen_width = frame.shape[1]

    tallest1 = [0, 0, 0, min_line_length]
    for line in lines:
        if (line[3] - line[1]) > (tallest1[3] - tallest1[1]):
            tallest1 = line
    if tallest1 in lines:
        lines.remove(tallest1)

    tallest2 = [screen_width, 0, screen_width, min_line_length]
    for line in lines:
        if (line[3] - line[1]) > (tallest2[3] - tallest2[1]):
            tallest2 = line

    if tallest1[0] < tallest2[0]:
        left, right = tallest1, tallest2
    else:
        left, right = tallest2, tallest1
    center_line = [left[0] + _half(right[0] - left[0]), tallest1[1],
                   left[2] + _half(right[2] - left[2]), tallest1[3]]

    line_center_x = (_half(center_line[0] - center_line[2]) + center_line[2]) - screen_width // 2
    channel_width = abs(_half(tallest1[0] - tallest1[2]) - _half(tallest2[0] - tallest2[2]))

    if abs(line_center_x) >= params.center_line_tolerance:
        return TRENCH_SENTINEL, mask

    cv2.line(annotated, (tallest2[0], tallest2[1]), (tallest2[2], tallest2[3]), (255, 0, 0), 3, cv2.LINE_4)
    cv2.line(annotated, (tallest1[0], tallest1[1]), (tallest1[2], tallest1[3]), (255, 0, 0), 3, cv2.LINE_4)
    cv2.line(annotated, (center_line[0], center_line[1]), (center_line[2], center_line[3]),
             (0, 200, 0), 3, cv2.LINE_4)
    return (line_center_x, channel_width), mask


def track_line(frame: np.ndarray, annotated: np.ndarray, params: PipelineParameters,
               orientation: LineOrientation, splits: int = 8) -> Tuple[List[float], np.ndarray]:
    """
    Follow a line through equal strips. Each strip contributes the centroid of
    its largest blob if it lies within the max gap of the previous point.
    The max gap is the contour area max limit of the line tuning block.
    """
    mask = hsv_mask(frame, params.hsv_lower, params.hsv_upper)
    height, width = mask.shape[:2]
    vertical = orientation.vertical
    split_size = (height if vertical else width) // splits
    max_gap = params.contour_area_max

    points: List[Tuple[int, int]] = []
    for i in range(splits):
        offset = split_size * i
        if vertical:
            strip = mask[offset:offset + split_size, :]
        else:
            strip = mask[:, offset:offset + split_size]

        contours, _ = cv2.findContours(strip, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        biggest_area = params.contour_area_min
        biggest = None
        for contour in contours:
            area = cv2.contourArea(contour)
            if area > biggest_area:
                biggest_area = area
                biggest = contour
        if biggest is None:
            continue

        moment = cv2.moments(biggest, True)
        if moment['m00'] == 0:
            continue
        cx = int(moment['m10'] / moment['m00'])
        cy = int(moment['m01'] / moment['m00'])

        if vertical:
            if points and abs(cx - points[-1][0]) >= max_gap:
                continue
            shift = (0, offset)
        else:
            if points and abs(cy - points[-1][1]) >= max_gap:
                continue
            shift = (offset, 0)

        point = (cx + shift[0], cy + shift[1])
        points.append(point)
        cv2.polylines(annotated, [biggest + np.array(shift, dtype=biggest.dtype)], True,
                      COLORS['contour'], 3)
        cv2.circle(annotated, point, 4, COLORS['centroid'], 5)

    draw_polyline(annotated, points, COLORS['line_path'], 1)

    values: List[float] = []
    if points:
        values.append(float(vertical))
        for x, y in points:
            values.extend((float(x), float(y)))

    orientation.update(len(points))
    return values, mask


def track_fish(frame: np.ndarray, annotated: np.ndarray, engine: Optional[DetectionEngine],
               confidence_threshold: float) -> List[Detection]:
    """Run the detector and draw labeled boxes. Detections are overlay only."""
    if engine is None or not engine.available:
        draw_notice(annotated, ["Fish tracking is disabled, no detection",
                                "backend could be loaded. Check the model directory."])
        return []

    detections = engine.infer(frame, confidence_threshold)
    for detection in detections:
        draw_detection(annotated, detection.box, engine.label(detection.class_id), detection.class_id)
    return detections


def track_tape(frame: np.ndarray, annotated: np.ndarray, params: PipelineParameters,
               profiles: Sequence[ColorProfile] = COLOR_PROFILES
               ) -> Tuple[List[TapeObject], Optional[np.ndarray]]:
    """Largest blob per tape color as a rotated rect, sorted left to right"""
    hsv = blurred_hsv(frame)
    found: Dict[str, TapeObject] = {}
    mask = None
    for profile in profiles:
        filtered = cv2.inRange(hsv, profile.lower, profile.upper)
        mask = cv2.dilate(filtered, KERNEL)
        contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        candidates = [c for c in contours
                      if params.contour_area_min <= cv2.contourArea(c) <= params.contour_area_max]
        if not candidates:
            continue

        largest = max(candidates, key=lambda c: abs(cv2.contourArea(c)))
        tape = TapeObject(profile.name, cv2.minAreaRect(largest))
        draw_rotated_rect(annotated, tape.corners, profile.overlay, 1)
        found[profile.name] = tape

    return sorted(found.values(), key=lambda t: t.center[0]), mask


def crop_to_tape(annotated: np.ndarray, tapes: Sequence[TapeObject]) -> np.ndarray:
    """Crop to the bounding box of every tape corner, clipped to the frame"""
    if not tapes:
        return annotated

    corners = np.concatenate([t.corners for t in tapes]).astype(np.float32)
    x, y, w, h = cv2.boundingRect(corners)
    rows, cols = annotated.shape[:2]
    x0, y0 = max(x, 0), max(y, 0)
    x1, y1 = min(x + w, cols), min(y + h, rows)
    if x1 <= x0 or y1 <= y0:
        return annotated
    return annotated[y0:y1, x0:x1].copy()


def _estimate_pose(image_points: Sequence[Tuple[float, float]], annotated: np.ndarray,
                   intrinsics: CameraIntrinsics) -> Optional[List[float]]:
    criteria = (cv2.TERM_CRITERIA_COUNT + cv2.TERM_CRITERIA_EPS, 30, 0.001)
    try:
        gray = cv2.cvtColor(annotated, cv2.COLOR_BGR2GRAY)
        corners = np.array(image_points, dtype=np.float32).reshape(-1, 1, 2)
        corners = cv2.cornerSubPix(gray, corners, (11, 11), (-1, -1), criteria)
        success, rvec, tvec = cv2.solvePnP(
            OBJECT_REFERENCE_POINTS, corners,
            intrinsics.camera_matrix, intrinsics.distortion_coefficients,
            flags=cv2.SOLVEPNP_ITERATIVE,
        )
        if not success:
            return None

        rotation, _ = cv2.Rodrigues(rvec)
        translation = -rotation.T @ tvec
        angles = cv2.RQDecomp3x3(rotation)[0]
        cv2.drawFrameAxes(annotated, intrinsics.camera_matrix,
                          intrinsics.distortion_coefficients, rvec, tvec, 20.0)
    except (cv2.error, ValueError) as e:
        raise PoseEstimationError(str(e)) from e

    return [float(v) for v in translation.ravel()] + [float(a) for a in angles]


def solve_object_pose(image_points: Sequence[Tuple[float, float]], annotated: np.ndarray,
                      intrinsics: Optional[CameraIntrinsics] = None,
                      warnings: Optional[RateLimitedLogger] = None) -> PoseResult:
    """Camera pose relative to the reference object. Never raises."""
    intrinsics = intrinsics or CameraIntrinsics()
    try:
        values = _estimate_pose(image_points, annotated, intrinsics)
        if values is None:
            result = PoseResult([0.0] * 6, PoseStatus.SEARCHING)
        else:
            result = PoseResult(values, PoseStatus.FOUND)
        if warnings:
            warnings.reset()
    except PoseEstimationError as e:
        result = PoseResult([0.0] * 6, PoseStatus.UNSOLVABLE)
        if warnings:
            warnings.warning(f"SolvePNP was unable to process the image data, moving on: {e}")

    draw_status_text(annotated, result.status.value)
    return result


class TrackingProcessor:
    """Runs the active tracking algorithm on the vision stream"""

    def __init__(self, vision_in: SharedFrame, vision_out: SharedFrame,
                 params: PipelineParameters, modes: ModeController,
                 engine: Optional[DetectionEngine] = None, frame_source=None,
                 tracking: Optional[TrackingConfig] = None,
                 intrinsics: Optional[CameraIntrinsics] = None):
        self.vision_in = vision_in
        self.vision_out = vision_out
        self.params = params
        self.modes = modes
        self.engine = engine
        self.frame_source = frame_source
        self.tracking = tracking or TrackingConfig()
        self.intrinsics = intrinsics or CameraIntrinsics()

        self.fps_counter = FrameTimer()
        self.orientation = LineOrientation()
        self.pose_warnings = RateLimitedLogger('PoseSolver', limit=100)

        self._result_lock = threading.Lock()
        self._latest = TrackingResult(mode=modes.mode)
        self._pose_values = [0.0] * 6
        self._stop_event = threading.Event()
        self._stopped = threading.Event()

    def fps(self) -> int:
        return self.fps_counter.frames_per_second()

    def _camera_fps(self) -> int:
        return self.frame_source.fps(0) if self.frame_source else 0

    def _select_backend(self, params: PipelineParameters):
        if self.engine is None:
            return
        if params.force_onnx:
            self.engine.prefer("onnx")
        else:
            self.engine.use_default()

    def process_frame(self, frame: np.ndarray,
                      params: Optional[PipelineParameters] = None) -> Tuple[np.ndarray, TrackingResult]:
        """Annotate one frame with the active mode"""
        params = params or self.params.snapshot()
        mode = self.modes.mode
        annotated = frame.copy()
        result = TrackingResult(mode=mode,
                                target_center_x=params.target_center_x,
                                target_center_y=params.target_center_y)
        mask = None

        if not params.driving_mode:
            if mode == TrackingMode.TRENCH:
                target, mask = track_trench(
                    frame, annotated, params,
                    (params.target_center_x, params.target_center_y),
                    self.tracking.trench_min_line_length)
                result.target_center_x, result.target_center_y = target
                self.params.set_target(*target)

            elif mode == TrackingMode.LINE:
                result.values, mask = track_line(frame, annotated, params,
                                                 self.orientation, self.tracking.line_splits)

            elif mode == TrackingMode.FISH:
                self._select_backend(params)
                result.detections = track_fish(frame, annotated, self.engine,
                                               params.confidence_threshold)

            elif mode == TrackingMode.TAPE:
                tapes, mask = track_tape(frame, annotated, params)
                result.tape_order = [t.color for t in tapes]
                if params.solve_pnp_enabled and len(tapes) == 4:
                    result.pose = solve_object_pose([t.center for t in tapes], annotated,
                                                    self.intrinsics, self.pose_warnings)
                    with self._result_lock:
                        self._pose_values = list(result.pose.values)
                if params.take_snapshot:
                    annotated = crop_to_tape(annotated, tapes)

        draw_fps_text(annotated, self._camera_fps(), self.fps())

        if params.tuning_mode and mask is not None:
            annotated = cv2.cvtColor(mask, cv2.COLOR_GRAY2BGR)

        return annotated, result

    def process_safely(self, frame: np.ndarray) -> np.ndarray:
        """process_frame with the error overlay in place of a crash"""
        try:
            annotated, result = self.process_frame(frame)
        except Exception as e:
            logger.warning(f"Frame corrupt or a runtime error occurred, frame dropped: {e}")
            annotated = frame.copy()
            draw_error_text(annotated)
            return annotated

        with self._result_lock:
            self._latest = result
        return annotated

    def latest_result(self) -> TrackingResult:
        with self._result_lock:
            return self._latest

    def pose_values(self) -> List[float]:
        with self._result_lock:
            return list(self._pose_values)

    def run(self):
        """Processing thread loop"""
        self._stop_event.wait(PROCESS_STARTUP_DELAY)
        logger.info("✓ Tracking processor started")

        while not self._stop_event.is_set():
            self.fps_counter.increment()

            # Trench trades a possibly torn frame for not waiting on capture.
            if self.modes.mode == TrackingMode.TRENCH:
                frame = self.vision_in.peek()
            else:
                frame = self.vision_in.reading()

            if frame is None or frame.size == 0:
                time.sleep(0.01)
                continue

            with self.vision_out.publishing() as writer:
                writer.set(self.process_safely(frame))

        self._stopped.set()
        logger.info("Tracking processor stopped")

    def stop(self):
        self._stop_event.set()

    @property
    def is_stopped(self) -> bool:
        return self._stopped.is_set()

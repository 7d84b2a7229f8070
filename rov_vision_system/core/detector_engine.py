# core/detector_engine.py
"""
Neural network detection engine for YOLOv5 style models.
Backends (Edge TPU, TorchScript, OpenCV DNN) share one decode path.
"""
import os
import cv2
import numpy as np
import torch
from dataclasses import dataclass
from typing import List, Optional, Tuple
from loguru import logger

from rov_vision_system.config.settings import DetectionConfig
from rov_vision_system.exceptions import (
    BackendUnavailable, DimensionMismatch, UnsupportedTensorType,
)


@dataclass(frozen=True)
class Detection:
    """Detection result container. Box is (x, y, width, height) in source pixels."""
    class_id: int
    confidence: float
    box: Tuple[int, int, int, int]

    @property
    def center(self) -> Tuple[int, int]:
        """Get center point of bounding box"""
        x, y, w, h = self.box
        return (x + w // 2, y + h // 2)

    @property
    def area(self) -> int:
        """Get bounding box area"""
        return self.box[2] * self.box[3]


@dataclass
class OutputTensor:
    """Raw model output with its quantization parameters"""
    data: np.ndarray
    scale: float = 1.0
    zero_point: int = 0
    name: str = "output"

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.data.shape)


def letterbox(frame: np.ndarray) -> np.ndarray:
    """Pad to a black square of side max(w, h) with the frame at the top-left"""
    height, width = frame.shape[:2]
    side = max(width, height)
    canvas = np.zeros((side, side) + frame.shape[2:], dtype=frame.dtype)
    canvas[:height, :width] = frame
    return canvas


def dequantize(tensor: OutputTensor) -> np.ndarray:
    """Convert a tensor to float32 rows of (5 + num_classes) values"""
    if tensor.dtype in (np.uint8, np.int8):
        values = (tensor.data.astype(np.float32) - tensor.zero_point) * tensor.scale
    elif tensor.dtype == np.float32:
        values = tensor.data
    else:
        raise UnsupportedTensorType(tensor.name, tensor.dtype)

    if values.ndim == 1:
        return values.reshape(1, -1)
    return values.reshape(-1, values.shape[-1])


def decode_predictions(rows: np.ndarray,
                       confidence_threshold: float,
                       class_score_threshold: float,
                       original_width: int, original_height: int,
                       model_width: int, model_height: int) -> List[Detection]:
    """Filter [cx, cy, w, h, obj, class scores...] rows and rescale boxes to the source"""
    if rows.size == 0 or rows.shape[1] <= 5:
        return []

    objectness = rows[:, 4]
    scores = rows[:, 5:]
    class_ids = np.argmax(scores, axis=1)
    best_scores = scores[np.arange(len(rows)), class_ids]
    keep = (objectness >= confidence_threshold) & (best_scores > class_score_threshold)

    width_factor = original_width / model_width
    height_factor = original_height / model_height

    detections = []
    for index in np.flatnonzero(keep):
        cx, cy, w, h = rows[index, :4]
        left = int((cx - 0.5 * w) * width_factor)
        top = int((cy - 0.5 * h) * height_factor)
        detections.append(Detection(
            class_id=int(class_ids[index]),
            confidence=float(min(max(objectness[index], 0.0), 1.0)),
            box=(left, top, int(w * width_factor), int(h * height_factor)),
        ))
    return detections


def non_max_suppression(detections: List[Detection], iou_threshold: float) -> List[Detection]:
    """Greedy NMS through cv2.dnn.NMSBoxes. Equal confidence keeps the first-seen box."""
    if len(detections) <= 1:
        return list(detections)

    boxes = [list(d.box) for d in detections]
    confidences = [d.confidence for d in detections]
    indices = cv2.dnn.NMSBoxes(boxes, confidences, 0.0, iou_threshold)

    if len(indices) > 0:
        indices = np.array(indices).flatten()
        return [detections[i] for i in indices]
    return []


class InferenceBackend:
    """Runs one forward pass on an NCHW float blob"""
    name = "base"
    # Boxes come out in [0, 1] instead of model pixels.
    normalized_output = False
    input_channels = 3

    def __init__(self, input_size: int):
        self.input_size = input_size

    @property
    def input_shape(self) -> Tuple[int, int, int, int]:
        return (1, self.input_channels, self.input_size, self.input_size)

    def run_forward(self, blob: np.ndarray) -> List[OutputTensor]:
        raise NotImplementedError


class OpenCVDnnBackend(InferenceBackend):
    """ONNX model on the CPU through cv2.dnn"""
    name = "onnx"

    def __init__(self, model_path: str, input_size: int = 640):
        super().__init__(input_size)
        if not os.path.exists(model_path):
            raise BackendUnavailable(f"ONNX model not found: {model_path}")
        try:
            self.net = cv2.dnn.readNetFromONNX(model_path)
        except cv2.error as e:
            raise BackendUnavailable(f"Failed to load ONNX model {model_path}: {e}") from e

        self.net.setPreferableBackend(cv2.dnn.DNN_BACKEND_OPENCV)
        self.net.setPreferableTarget(cv2.dnn.DNN_TARGET_CPU)
        self.output_names = self.net.getUnconnectedOutLayersNames()
        logger.info(f"✓ ONNX model loaded: {model_path}")

    def run_forward(self, blob: np.ndarray) -> List[OutputTensor]:
        self.net.setInput(blob)
        outputs = self.net.forward(self.output_names)
        return [OutputTensor(np.asarray(out), name=name)
                for name, out in zip(self.output_names, outputs)]


class TorchBackend(InferenceBackend):
    """TorchScript export on CUDA when present, otherwise CPU"""
    name = "torch"

    def __init__(self, model_path: str, device: str = "cuda:0", input_size: int = 640):
        super().__init__(input_size)
        if not os.path.exists(model_path):
            raise BackendUnavailable(f"TorchScript model not found: {model_path}")

        self.device = torch.device(device if torch.cuda.is_available() else 'cpu')
        try:
            self.model = torch.jit.load(model_path, map_location=self.device)
        except (RuntimeError, ValueError) as e:
            raise BackendUnavailable(f"Failed to load TorchScript model {model_path}: {e}") from e
        self.model.eval()
        logger.info(f"✓ TorchScript model loaded on {self.device}")

    def run_forward(self, blob: np.ndarray) -> List[OutputTensor]:
        with torch.no_grad():
            output = self.model(torch.from_numpy(blob).to(self.device))
        if isinstance(output, (list, tuple)):
            output = output[0]
        return [OutputTensor(output.detach().cpu().numpy().astype(np.float32), name="output0")]


class EdgeTpuBackend(InferenceBackend):
    """Quantized TFLite model on a Coral accelerator"""
    name = "edgetpu"
    normalized_output = True

    def __init__(self, model_path: str):
        if not os.path.exists(model_path):
            raise BackendUnavailable(f"Edge TPU model not found: {model_path}")
        try:
            from pycoral.utils.edgetpu import make_interpreter
        except ImportError as e:
            raise BackendUnavailable(f"pycoral is not installed: {e}") from e

        try:
            self.interpreter = make_interpreter(model_path)
            self.interpreter.allocate_tensors()
        except (RuntimeError, ValueError) as e:
            raise BackendUnavailable(f"No Edge TPU device available: {e}") from e

        self.input_details = self.interpreter.get_input_details()[0]
        self.output_details = self.interpreter.get_output_details()
        _, height, width, channels = self.input_details['shape']
        if height != width:
            raise BackendUnavailable(f"Edge TPU model input must be square, got {width}x{height}")
        super().__init__(int(height))
        self.input_channels = int(channels)
        logger.info(f"✓ Edge TPU interpreter built: {model_path}")

    def run_forward(self, blob: np.ndarray) -> List[OutputTensor]:
        # NCHW float in [0, 1] to NHWC in the model's input type.
        image = np.transpose(blob, (0, 2, 3, 1))
        scale, zero_point = self.input_details['quantization']
        dtype = self.input_details['dtype']
        if dtype == np.float32:
            tensor = image.astype(np.float32)
        else:
            tensor = (image / (scale or 1.0) + zero_point).round()
            info = np.iinfo(dtype)
            tensor = np.clip(tensor, info.min, info.max).astype(dtype)

        self.interpreter.set_tensor(self.input_details['index'], tensor)
        self.interpreter.invoke()

        outputs = []
        for detail in self.output_details:
            out_scale, out_zero_point = detail['quantization']
            outputs.append(OutputTensor(
                self.interpreter.get_tensor(detail['index']),
                scale=out_scale or 1.0,
                zero_point=out_zero_point,
                name=detail['name'],
            ))
        return outputs


def load_class_names(path: str) -> List[str]:
    """Read one class name per line"""
    if not os.path.exists(path):
        logger.warning(f"Class list not found at {path}, using numeric labels")
        return []
    with open(path, 'r') as f:
        return [line.strip() for line in f if line.strip()]


class DetectionEngine:
    """Letterbox, forward, dequantize, decode and suppress"""

    def __init__(self, backends: List[InferenceBackend], class_names: Optional[List[str]] = None,
                 class_score_threshold: float = 0.2,
                 nms_threshold: float = 0.4):
        self.backends = list(backends)
        self.class_names = class_names or []
        self.class_score_threshold = class_score_threshold
        self.nms_threshold = nms_threshold
        self._active = self.backends[0] if self.backends else None

    @property
    def available(self) -> bool:
        return self._active is not None

    @property
    def backend_name(self) -> Optional[str]:
        return self._active.name if self._active else None

    def prefer(self, name: str) -> bool:
        """Switch to the named backend if it was loaded"""
        for backend in self.backends:
            if backend.name == name:
                if backend is not self._active:
                    logger.info(f"Detection backend switched to {name}")
                self._active = backend
                return True
        return False

    def use_default(self):
        if self.backends and self._active is not self.backends[0]:
            self._active = self.backends[0]
            logger.info(f"Detection backend switched to {self._active.name}")

    def label(self, class_id: int) -> str:
        if 0 <= class_id < len(self.class_names):
            return self.class_names[class_id]
        return str(class_id)

    def infer(self, frame: np.ndarray, confidence_threshold: float) -> List[Detection]:
        """Run the active backend over one BGR frame"""
        backend = self._active
        if backend is None:
            return []

        square = letterbox(frame)
        blob = cv2.dnn.blobFromImage(square, 1.0 / 255.0, (backend.input_size, backend.input_size),
                                     swapRB=True, crop=False)
        if tuple(blob.shape) != backend.input_shape:
            raise DimensionMismatch(backend.input_shape, tuple(blob.shape))

        tensors = backend.run_forward(blob)
        side = square.shape[0]
        candidates: List[Detection] = []
        for tensor in tensors:
            try:
                rows = dequantize(tensor)
            except UnsupportedTensorType as e:
                logger.warning(str(e))
                continue
            if backend.normalized_output:
                rows = rows.copy()
                rows[:, :4] *= backend.input_size
            candidates.extend(decode_predictions(
                rows, confidence_threshold, self.class_score_threshold,
                side, side, backend.input_size, backend.input_size,
            ))

        return non_max_suppression(candidates, self.nms_threshold)


def build_default_engine(config: DetectionConfig) -> DetectionEngine:
    """Load every backend that works here, fastest first"""
    backends: List[InferenceBackend] = []
    loaders = [
        (EdgeTpuBackend, (os.path.join(config.model_dir, config.tflite_model),)),
        (TorchBackend, (os.path.join(config.model_dir, config.torch_model),
                        config.device, config.input_size)),
        (OpenCVDnnBackend, (os.path.join(config.model_dir, config.onnx_model),
                            config.input_size)),
    ]
    for backend_class, args in loaders:
        try:
            backends.append(backend_class(*args))
        except BackendUnavailable as e:
            logger.warning(f"{backend_class.name} backend unavailable: {e}")

    if not backends:
        logger.warning("No detection backend available, fish tracking disabled")

    return DetectionEngine(
        backends,
        class_names=load_class_names(os.path.join(config.model_dir, config.class_file)),
        class_score_threshold=config.class_score_threshold,
        nms_threshold=config.nms_threshold,
    )

# exceptions.py
"""
Exception hierarchy for the ROV vision pipeline
"""


class VisionError(Exception):
    """Base class for all pipeline errors"""


class ConfigurationError(VisionError):
    """Startup configuration is missing or malformed. Fatal before threads start."""


class CameraError(VisionError):
    """A camera grab failed or returned an empty frame"""


class DetectionError(VisionError):
    """Base class for inference errors"""


class BackendUnavailable(DetectionError):
    """An inference backend could not be constructed (device or model missing)"""


class DimensionMismatch(DetectionError):
    """The supplied input does not match the model's declared input resolution"""

    def __init__(self, expected, actual):
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        super().__init__(f"Model input is {self.expected} but got {self.actual}")


class UnsupportedTensorType(DetectionError):
    """An output tensor has an element type the decoder cannot handle"""

    def __init__(self, name: str, dtype):
        self.name = name
        self.dtype = dtype
        super().__init__(f"Tensor {name} has unsupported output type: {dtype}")


class PoseEstimationError(VisionError):
    """Pose solver could not process the supplied points"""

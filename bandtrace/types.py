"""Common types, configuration and exceptions for bandtrace."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np

# Type aliases
ImageArray = np.ndarray
RGB = Tuple[int, int, int]
PathData = str

MAX_COLORS = 6
STRATEGY_NAMES = ("range", "histogram", "kmeans", "posterize")
BAND_ERROR_POLICIES = ("abort", "skip")


class Stage(Enum):
    """States a request passes through in the pipeline."""

    RECEIVED = "received"
    PREPROCESSED = "preprocessed"
    PARTITIONED = "partitioned"
    MASKED = "masked"
    TRACED = "traced"
    SINGLE_TRACED = "single_traced"
    COMPOSED = "composed"
    DONE = "done"


@dataclass
class Raster:
    """Row-major pixel buffer of shape (height, width, channels)."""

    pixels: ImageArray

    def __post_init__(self):
        if self.pixels.ndim != 3 or self.pixels.shape[2] not in (3, 4):
            raise ValueError(
                f"Raster needs an (H, W, 3|4) array, got shape {self.pixels.shape}"
            )
        # Strided views (flips, crops) are copied into a packed row-major buffer
        self.pixels = np.ascontiguousarray(self.pixels, dtype=np.uint8)

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def channels(self) -> int:
        return int(self.pixels.shape[2])

    @property
    def rgb(self) -> ImageArray:
        """The first three channels."""
        return self.pixels[..., :3]


def luma(pixels: ImageArray) -> ImageArray:
    """Per-pixel brightness 0.299R + 0.587G + 0.114B as float32 (H, W)."""
    rgb = pixels[..., :3].astype(np.float32)
    return 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]


@dataclass(frozen=True)
class LumaRange:
    """Membership by brightness: low <= luma < high."""

    low: float
    high: float
    include_high: bool = False

    def contains(self, pixels: ImageArray) -> np.ndarray:
        value = luma(pixels)
        if self.include_high:
            return (value >= self.low) & (value <= self.high)
        return (value >= self.low) & (value < self.high)


@dataclass(frozen=True)
class ColorDistance:
    """Membership by squared RGB distance to a center color."""

    center: RGB
    tolerance: float

    def contains(self, pixels: ImageArray) -> np.ndarray:
        diff = pixels[..., :3].astype(np.int32) - np.array(self.center, dtype=np.int32)
        return np.sum(diff * diff, axis=-1) <= self.tolerance


BandPredicate = Union[LumaRange, ColorDistance]


@dataclass(frozen=True)
class BandDescriptor:
    """One color band; list position is the paint order."""

    index: int
    predicate: BandPredicate
    color: RGB
    pixel_count: int = 0


@dataclass
class BinaryMask:
    """Single-channel mask holding only 0 and 255."""

    pixels: ImageArray
    color: RGB
    index: int = 0

    @property
    def foreground(self) -> np.ndarray:
        return self.pixels > 0

    @property
    def is_empty(self) -> bool:
        return not bool(np.any(self.pixels))

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])


@dataclass
class Layer:
    """Traced outlines of one band plus its fill color."""

    index: int
    color: RGB
    curves: List[PathData] = field(default_factory=list)
    background: Optional[RGB] = None  # None means transparent

    @property
    def path_data(self) -> PathData:
        return " ".join(self.curves)

    @property
    def is_empty(self) -> bool:
        return not self.curves


@dataclass(frozen=True)
class TraceOptions:
    """Tuning knobs handed to potrace."""

    turdsize: int = 5
    alphamax: float = 1.0
    opticurve: bool = True
    opttolerance: float = 0.2
    turnpolicy: str = "minority"


@dataclass
class PipelineConfig:
    """Configuration for the bandtrace pipeline."""

    # Band count; 1 takes the single-band path
    color_count: int = 1

    # Preprocessing
    long_side: int = 800
    blur_radius: int = 1

    # Single-band binarization
    threshold: float = 128.0
    adaptive_threshold: bool = False
    single_color: RGB = (0, 0, 0)
    single_background: RGB = (255, 255, 255)

    # Partitioning
    strategy: str = "range"
    color_tolerance: float = 4000.0  # squared RGB distance
    kmeans_iterations: int = 8
    kmeans_min_pixels: int = 1000
    seed: int = 42

    # Mask cleanup
    min_region_area: int = 0

    # Tracing
    turdsize: int = 5
    alphamax: float = 1.0
    opticurve: bool = True
    opttolerance: float = 0.2

    # Execution
    workers: int = 1
    on_band_error: str = "abort"

    # Output
    precision: int = 2
    stages_dir: Optional[Union[str, Path]] = None

    def __post_init__(self):
        self.color_count = max(1, min(MAX_COLORS, int(self.color_count)))
        if self.strategy not in STRATEGY_NAMES:
            raise ValueError(
                f"Unknown strategy {self.strategy!r}, expected one of {', '.join(STRATEGY_NAMES)}"
            )
        if self.on_band_error not in BAND_ERROR_POLICIES:
            raise ValueError(
                f"on_band_error must be 'abort' or 'skip', got {self.on_band_error!r}"
            )
        if self.long_side < 1:
            raise ValueError(f"long_side must be >= 1, got {self.long_side}")
        if self.blur_radius < 0:
            raise ValueError(f"blur_radius must be >= 0, got {self.blur_radius}")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")

    def trace_options(self) -> TraceOptions:
        return TraceOptions(
            turdsize=self.turdsize,
            alphamax=self.alphamax,
            opticurve=self.opticurve,
            opttolerance=self.opttolerance,
        )


@dataclass
class VectorizeResult:
    """Outcome of one pipeline request."""

    svg: bytes
    width: int
    height: int
    mode: str
    request_id: str
    bands: List[BandDescriptor] = field(default_factory=list)
    layers: List[Layer] = field(default_factory=list)
    stages: List[Stage] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)


class BandtraceError(Exception):
    """Base exception for bandtrace."""

    pass


class EmptyInputError(BandtraceError):
    """No image bytes were supplied."""

    pass


class DecodeError(BandtraceError):
    """The supplied bytes are not a readable image."""

    pass


class TraceError(BandtraceError):
    """potrace failed on a mask."""

    pass


class InternalIOError(BandtraceError):
    """Reading or writing working files failed."""

    pass


class VectorizationError(BandtraceError):
    """Unexpected failure inside the pipeline."""

    pass

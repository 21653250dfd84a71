"""Main pipeline orchestrator for bandtrace."""

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np
from PIL import Image

from .extract import binarize, build_mask
from .partition import partition
from .preprocess import adaptive_threshold, normalize
from .svg import compose, save_svg
from .trace import trace_layer
from .types import (
    BandDescriptor,
    BandtraceError,
    InternalIOError,
    Layer,
    PipelineConfig,
    Raster,
    Stage,
    TraceError,
    VectorizationError,
    VectorizeResult,
)

logger = logging.getLogger(__name__)


class Pipeline:
    """Raster to SVG pipeline with optional multi-band decomposition.

    A Pipeline only holds its configuration, so one instance can serve
    concurrent requests.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        """Initialize pipeline with configuration.

        Args:
            config: Pipeline configuration. Uses defaults if None.
        """
        self.config = config or PipelineConfig()

    def process(self, data: bytes) -> VectorizeResult:
        """Vectorize encoded image bytes.

        Args:
            data: Encoded image (PNG, JPEG, ...)

        Returns:
            VectorizeResult holding the SVG document and what produced it

        Raises:
            EmptyInputError: If data is empty
            DecodeError: If data is not a readable image
            TraceError: If potrace fails and on_band_error is "abort"
            InternalIOError: If stage snapshots cannot be written
            VectorizationError: If processing fails unexpectedly
        """
        request_id = uuid.uuid4().hex[:12]
        stages = [Stage.RECEIVED]
        logger.info("Request %s: %d bytes received", request_id, len(data or b""))

        try:
            raster = normalize(data, self.config.long_side, self.config.blur_radius)
            stages.append(Stage.PREPROCESSED)
            self._save_stage(request_id, "base", raster.rgb)

            if self.config.color_count <= 1:
                result = self._process_single(raster, request_id, stages)
            else:
                result = self._process_bands(raster, request_id, stages)

        except BandtraceError:
            logger.info("Request %s aborted after %s", request_id, stages[-1].value)
            raise
        except Exception as e:
            logger.info("Request %s aborted after %s", request_id, stages[-1].value)
            raise VectorizationError(f"Pipeline processing failed: {e}") from e

        stages.append(Stage.DONE)
        logger.info(
            "Request %s done: %s mode, %d layers", request_id, result.mode, len(result.layers)
        )
        return result

    def process_file(self, image_path: Union[str, Path]) -> VectorizeResult:
        """Vectorize an image file.

        Raises:
            FileNotFoundError: If the input file doesn't exist
            InternalIOError: If the file cannot be read
        """
        path = Path(image_path)
        if not path.is_file():
            raise FileNotFoundError(f"Image file not found: {path}")
        try:
            data = path.read_bytes()
        except OSError as e:
            raise InternalIOError(f"Failed to read {path}: {e}") from e
        return self.process(data)

    def _process_single(
        self, raster: Raster, request_id: str, stages: List[Stage]
    ) -> VectorizeResult:
        """Binarize by a global threshold and trace once."""
        if self.config.adaptive_threshold:
            threshold = adaptive_threshold(raster)
        else:
            threshold = self.config.threshold
        logger.info("Request %s: single-band mode, threshold %.1f", request_id, threshold)

        mask = binarize(raster, threshold, self.config.single_color)
        self._save_stage(request_id, "mask", mask.pixels)

        layer = trace_layer(
            mask,
            self.config.trace_options(),
            background=self.config.single_background,
            precision=self.config.precision,
        )
        stages.append(Stage.SINGLE_TRACED)

        # Always one path group, empty when nothing falls below the threshold
        svg = compose(raster.width, raster.height, [layer], keep_empty=True)
        return VectorizeResult(
            svg=svg,
            width=raster.width,
            height=raster.height,
            mode="single",
            request_id=request_id,
            layers=[layer] if not layer.is_empty else [],
            stages=stages,
        )

    def _process_bands(
        self, raster: Raster, request_id: str, stages: List[Stage]
    ) -> VectorizeResult:
        """Partition, mask and trace each band, then compose."""
        bands = partition(raster, self.config.color_count, self.config.strategy, self.config)
        stages.append(Stage.PARTITIONED)
        logger.info(
            "Request %s: %d bands from %s strategy", request_id, len(bands), self.config.strategy
        )

        active = [band for band in bands if band.pixel_count > 0]
        workers = min(self.config.workers, len(active))

        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                # map() yields in submission order, keeping the paint order
                outcomes = list(
                    executor.map(lambda band: self._run_band(raster, band, request_id), active)
                )
        else:
            outcomes = [self._run_band(raster, band, request_id) for band in active]

        stages.extend([Stage.MASKED, Stage.TRACED])

        layers = []
        diagnostics = []
        for layer, diagnostic in outcomes:
            if diagnostic:
                diagnostics.append(diagnostic)
            elif layer is not None and not layer.is_empty:
                layers.append(layer)

        svg = compose(raster.width, raster.height, layers)
        stages.append(Stage.COMPOSED)

        return VectorizeResult(
            svg=svg,
            width=raster.width,
            height=raster.height,
            mode="multi",
            request_id=request_id,
            bands=bands,
            layers=layers,
            stages=stages,
            diagnostics=diagnostics,
        )

    def _run_band(
        self, raster: Raster, band: BandDescriptor, request_id: str
    ) -> Tuple[Optional[Layer], Optional[str]]:
        """Mask and trace one band, applying the band failure policy."""
        mask = build_mask(raster, band, self.config.min_region_area)
        if mask.is_empty:
            return None, None
        self._save_stage(request_id, f"band{band.index}", mask.pixels)

        try:
            layer = trace_layer(
                mask, self.config.trace_options(), precision=self.config.precision
            )
        except TraceError as e:
            if self.config.on_band_error == "abort":
                raise
            message = f"band {band.index} skipped: {e}"
            logger.warning("Request %s: %s", request_id, message)
            return None, message

        return layer, None

    def _save_stage(self, request_id: str, name: str, pixels: np.ndarray) -> None:
        """Write an intermediate buffer as PNG when stages_dir is configured."""
        if self.config.stages_dir is None:
            return

        path = Path(self.config.stages_dir) / f"trace-{request_id}-{name}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            Image.fromarray(np.ascontiguousarray(pixels)).save(path)
        except OSError as e:
            raise InternalIOError(f"Failed to write stage {path}: {e}") from e
        logger.debug("Saved stage %s", path)


def run(
    image_bytes: bytes,
    color_count: int = 1,
    target_long_side: int = 800,
    config: Optional[PipelineConfig] = None,
) -> bytes:
    """Vectorize image bytes and return the SVG document.

    Convenience function for one-off processing.

    Args:
        image_bytes: Encoded image
        color_count: Number of bands, clamped to [1, 6]; 1 traces a
            single black-on-white layer
        target_long_side: Longer side of the working raster in pixels
        config: Optional base configuration for the remaining knobs

    Returns:
        SVG document bytes

    Example:
        >>> svg = run(Path("logo.png").read_bytes(), color_count=3)
    """
    config = replace(config or PipelineConfig(), color_count=color_count, long_side=target_long_side)
    return Pipeline(config).process(image_bytes).svg


def process_image(
    image_path: Union[str, Path],
    output_path: Optional[Union[str, Path]] = None,
    config: Optional[PipelineConfig] = None,
) -> bytes:
    """Vectorize an image file, optionally saving the SVG.

    Args:
        image_path: Path to input image
        output_path: Optional path to save SVG output
        config: Optional configuration object

    Returns:
        SVG document bytes
    """
    result = Pipeline(config).process_file(image_path)
    if output_path:
        save_svg(result.svg, output_path)
    return result.svg

"""Band partitioning: reduce a raster to a few brightness or color bands.

Four interchangeable strategies are provided, all returning an ordered
list of BandDescriptor. List order is the paint order of the final SVG
(first band drawn first, last band on top).
"""

import logging
from typing import Dict, List, Optional, Tuple, Type, Union

import numpy as np
from PIL import Image
from skimage.color import hsv2rgb
from sklearn.metrics import pairwise_distances_argmin

from .types import (
    MAX_COLORS,
    RGB,
    BandDescriptor,
    ColorDistance,
    ImageArray,
    LumaRange,
    PipelineConfig,
    Raster,
    luma,
)

logger = logging.getLogger(__name__)


def clamp_color_count(color_count: int) -> int:
    """Clamp a requested band count to [1, MAX_COLORS]."""
    return max(1, min(MAX_COLORS, int(color_count)))


def hue_color(index: int, count: int) -> RGB:
    """Evenly spaced fallback color, hsl(360/count*index, 90%, 40%)."""
    hue = (index / max(count, 1)) % 1.0
    # HSL(s=0.9, l=0.4) expressed in HSV
    value = 0.4 + 0.9 * 0.4
    saturation = 2.0 * (1.0 - 0.4 / value)
    rgb = hsv2rgb(np.array([[[hue, saturation, value]]], dtype=np.float64))[0, 0]
    return tuple(int(round(c * 255)) for c in rgb)


def mean_color(rgb: ImageArray, members: np.ndarray) -> Optional[RGB]:
    """Mean RGB of member pixels, or None when there are none."""
    if not np.any(members):
        return None
    mean = rgb[members].reshape(-1, 3).astype(np.float64).mean(axis=0)
    return tuple(int(round(c)) for c in mean)


class PartitionStrategy:
    """Base class for band partitioning strategies."""

    name = "base"

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "PartitionStrategy":
        return cls()

    def partition(self, raster: Raster, color_count: int) -> List[BandDescriptor]:
        raise NotImplementedError


class EqualRangeStrategy(PartitionStrategy):
    """Split [min luma, max luma] into equal-width bins."""

    name = "range"

    def partition(self, raster: Raster, color_count: int) -> List[BandDescriptor]:
        rgb = raster.rgb
        value = luma(rgb)
        lo, hi = float(value.min()), float(value.max())

        if hi == lo:
            # Flat image: one band holds everything
            predicate = LumaRange(lo, hi, include_high=True)
            members = predicate.contains(rgb)
            return [BandDescriptor(0, predicate, mean_color(rgb, members), int(members.sum()))]

        step = (hi - lo) / color_count
        bands = []
        for i in range(color_count):
            last = i == color_count - 1
            low = lo + step * i
            high = hi if last else lo + step * (i + 1)
            predicate = LumaRange(low, high, include_high=last)
            members = predicate.contains(rgb)

            color = mean_color(rgb, members)
            if color is None:
                color = hue_color(i, color_count)

            bands.append(BandDescriptor(i, predicate, color, int(members.sum())))
            logger.debug("Range band %d: %.1f-%.1f, %d px", i, low, high, bands[-1].pixel_count)

        return bands


class EqualFrequencyStrategy(PartitionStrategy):
    """Split the luma histogram so each band holds about the same pixel count."""

    name = "histogram"

    @staticmethod
    def thresholds(value: np.ndarray, color_count: int) -> List[int]:
        """Histogram bin boundaries t_0=0 < ... <= t_n=256."""
        bins = np.clip(np.floor(value + 0.5), 0, 255).astype(np.int64)
        hist = np.bincount(bins.ravel(), minlength=256)
        cumulative = np.cumsum(hist)
        total = int(cumulative[-1])

        bounds = [0]
        for i in range(1, color_count):
            target = total / color_count * i
            crossing = int(np.searchsorted(cumulative, target, side="left"))
            # The crossing bin goes to whichever side leaves the lower band
            # closest to the target count
            below = int(cumulative[crossing - 1]) if crossing > 0 else 0
            above = int(cumulative[crossing])
            bound = crossing if target - below < above - target else crossing + 1
            bounds.append(min(256, max(bounds[-1], bound)))
        bounds.append(256)
        return bounds

    def partition(self, raster: Raster, color_count: int) -> List[BandDescriptor]:
        rgb = raster.rgb
        bounds = self.thresholds(luma(rgb), color_count)

        bands = []
        for low, high in zip(bounds[:-1], bounds[1:]):
            if high <= low:
                continue
            # Bin b holds luma in [b - 0.5, b + 0.5)
            predicate = LumaRange(low - 0.5, high - 0.5)
            members = predicate.contains(rgb)
            color = mean_color(rgb, members)
            if color is None:
                continue
            bands.append(BandDescriptor(len(bands), predicate, color, int(members.sum())))

        logger.debug("Histogram thresholds %s -> %d bands", bounds, len(bands))
        return bands


def kmeans(
    pixels: ImageArray,
    k: int,
    iterations: int = 8,
    seed: int = 42,
    tol: float = 0.0,
) -> Tuple[np.ndarray, np.ndarray, float]:
    """Lloyd's k-means in RGB space with a fixed iteration budget.

    Centroids are seeded by sampling k pixels uniformly at random.
    A centroid that loses all of its members keeps its previous value.

    Args:
        pixels: Array whose last axis holds RGB values
        k: Number of clusters
        iterations: Maximum number of assignment/update rounds
        seed: Seed for the initial sample
        tol: Stop early once no centroid moves more than this

    Returns:
        Tuple of (centroids (k, 3), labels (N,), last_shift) where
        last_shift is the largest centroid move in the final round
    """
    data = pixels[..., :3].reshape(-1, 3).astype(np.float64)
    n = len(data)
    if n == 0:
        raise ValueError("Cannot cluster an empty image")

    rng = np.random.default_rng(seed)
    seeds = rng.choice(n, size=k, replace=n < k)
    centroids = data[seeds].copy()

    last_shift = float("inf")
    for _ in range(iterations):
        labels = pairwise_distances_argmin(data, centroids)
        counts = np.bincount(labels, minlength=k)
        sums = np.stack(
            [np.bincount(labels, weights=data[:, c], minlength=k) for c in range(3)],
            axis=1,
        )

        updated = centroids.copy()
        filled = counts > 0
        updated[filled] = sums[filled] / counts[filled, None]

        last_shift = float(np.max(np.linalg.norm(updated - centroids, axis=1)))
        centroids = updated
        if last_shift <= tol:
            break

    labels = pairwise_distances_argmin(data, centroids)
    return centroids, labels, last_shift


class KMeansStrategy(PartitionStrategy):
    """Cluster pixels in RGB space; small clusters are dropped."""

    name = "kmeans"

    def __init__(
        self,
        iterations: int = 8,
        min_pixels: int = 1000,
        tolerance: float = 4000.0,
        seed: int = 42,
    ):
        self.iterations = iterations
        self.min_pixels = min_pixels
        self.tolerance = tolerance
        self.seed = seed

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "KMeansStrategy":
        return cls(
            iterations=config.kmeans_iterations,
            min_pixels=config.kmeans_min_pixels,
            tolerance=config.color_tolerance,
            seed=config.seed,
        )

    def partition(self, raster: Raster, color_count: int) -> List[BandDescriptor]:
        centroids, labels, shift = kmeans(
            raster.rgb, color_count, iterations=self.iterations, seed=self.seed
        )
        counts = np.bincount(labels, minlength=color_count)
        logger.debug("k-means counts %s, final shift %.3f", counts.tolist(), shift)

        # Largest cluster first so it sits at the back
        order = sorted(range(color_count), key=lambda c: (-counts[c], c))
        bands = []
        for cluster in order:
            if counts[cluster] < self.min_pixels:
                logger.debug("Dropping cluster %d with %d px", cluster, counts[cluster])
                continue
            center = tuple(int(round(v)) for v in np.clip(centroids[cluster], 0, 255))
            bands.append(
                BandDescriptor(
                    len(bands),
                    ColorDistance(center, self.tolerance),
                    center,
                    int(counts[cluster]),
                )
            )
        return bands


class PosterizeStrategy(PartitionStrategy):
    """Quantize with Pillow, then take the first distinct colors in scan order."""

    name = "posterize"

    def __init__(self, tolerance: float = 4000.0):
        self.tolerance = tolerance

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "PosterizeStrategy":
        return cls(tolerance=config.color_tolerance)

    @staticmethod
    def palette(raster: Raster, color_count: int) -> Tuple[np.ndarray, np.ndarray]:
        """First color_count distinct colors of the quantized image and their counts."""
        img = Image.fromarray(np.ascontiguousarray(raster.rgb))
        quantized = img.quantize(colors=color_count, method=Image.Quantize.MEDIANCUT)
        flat = np.asarray(quantized.convert("RGB")).reshape(-1, 3)

        colors, first_seen, counts = np.unique(
            flat, axis=0, return_index=True, return_counts=True
        )
        order = np.argsort(first_seen, kind="stable")[:color_count]
        return colors[order], counts[order]

    def partition(self, raster: Raster, color_count: int) -> List[BandDescriptor]:
        colors, counts = self.palette(raster, color_count)
        bands = []
        for i, (color, count) in enumerate(zip(colors, counts)):
            rgb = tuple(int(c) for c in color)
            bands.append(BandDescriptor(i, ColorDistance(rgb, self.tolerance), rgb, int(count)))
        return bands


STRATEGIES: Dict[str, Type[PartitionStrategy]] = {
    EqualRangeStrategy.name: EqualRangeStrategy,
    EqualFrequencyStrategy.name: EqualFrequencyStrategy,
    KMeansStrategy.name: KMeansStrategy,
    PosterizeStrategy.name: PosterizeStrategy,
}


def get_strategy(name: str, config: Optional[PipelineConfig] = None) -> PartitionStrategy:
    """Build a registered strategy by name, tuned from config when given."""
    try:
        strategy_cls = STRATEGIES[name]
    except KeyError:
        raise ValueError(
            f"Unknown strategy {name!r}, expected one of {', '.join(STRATEGIES)}"
        ) from None
    if config is None:
        return strategy_cls()
    return strategy_cls.from_config(config)


def partition(
    raster: Raster,
    color_count: int,
    strategy: Union[str, PartitionStrategy] = "range",
    config: Optional[PipelineConfig] = None,
) -> List[BandDescriptor]:
    """Partition a raster into at most color_count ordered bands.

    Args:
        raster: Normalized raster
        color_count: Requested band count, clamped to [1, MAX_COLORS]
        strategy: Strategy name or instance
        config: Optional configuration used to tune named strategies

    Returns:
        Ordered list of band descriptors
    """
    color_count = clamp_color_count(color_count)
    if color_count == 1:
        return EqualRangeStrategy().partition(raster, 1)

    if isinstance(strategy, str):
        strategy = get_strategy(strategy, config)

    bands = strategy.partition(raster, color_count)
    logger.info("Partitioned into %d bands using %s", len(bands), strategy.name)
    return bands

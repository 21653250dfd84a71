"""Mask building: one binary bitmap per band."""

import logging

import numpy as np
from scipy import ndimage

from .types import RGB, BandDescriptor, BinaryMask, Raster, luma

logger = logging.getLogger(__name__)


def build_mask(raster: Raster, band: BandDescriptor, min_region_area: int = 0) -> BinaryMask:
    """Create the binary mask of pixels belonging to a band.

    The source raster is never modified.

    Args:
        raster: Normalized raster
        band: Band whose predicate decides membership
        min_region_area: Drop connected regions smaller than this (0 keeps all)

    Returns:
        BinaryMask with 255 for members and 0 elsewhere
    """
    members = band.predicate.contains(raster.rgb)
    if min_region_area > 0:
        members = clean_mask(members, min_region_area)

    pixels = np.where(members, 255, 0).astype(np.uint8)
    logger.debug("Band %d mask: %d px", band.index, int(members.sum()))
    return BinaryMask(pixels=pixels, color=band.color, index=band.index)


def binarize(raster: Raster, threshold: float, color: RGB = (0, 0, 0)) -> BinaryMask:
    """Single-band mask: pixels darker than threshold are foreground."""
    members = luma(raster.rgb) < threshold
    pixels = np.where(members, 255, 0).astype(np.uint8)
    return BinaryMask(pixels=pixels, color=color, index=0)


def clean_mask(mask: np.ndarray, min_area: int = 10) -> np.ndarray:
    """Clean mask by removing small noise regions.

    Args:
        mask: Boolean mask
        min_area: Minimum area (in pixels) to keep

    Returns:
        Cleaned boolean mask
    """
    labeled, num_features = ndimage.label(mask)
    if num_features == 0:
        return mask.copy()

    sizes = np.bincount(labeled.ravel(), minlength=num_features + 1)
    keep = sizes >= min_area
    keep[0] = False
    return keep[labeled]

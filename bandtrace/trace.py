"""Layer tracing: binary mask to closed Bezier outlines via potrace."""

import logging
from typing import List, Optional

import numpy as np
import potrace

from .svg import format_number
from .types import RGB, BinaryMask, Layer, PathData, TraceError, TraceOptions

logger = logging.getLogger(__name__)

TURN_POLICIES = {
    "black": potrace.POTRACE_TURNPOLICY_BLACK,
    "white": potrace.POTRACE_TURNPOLICY_WHITE,
    "left": potrace.POTRACE_TURNPOLICY_LEFT,
    "right": potrace.POTRACE_TURNPOLICY_RIGHT,
    "minority": potrace.POTRACE_TURNPOLICY_MINORITY,
    "majority": potrace.POTRACE_TURNPOLICY_MAJORITY,
    "random": potrace.POTRACE_TURNPOLICY_RANDOM,
}


def trace_curves(foreground: np.ndarray, options: Optional[TraceOptions] = None) -> list:
    """Run potrace on a boolean foreground mask.

    Args:
        foreground: Boolean array (H, W), True for pixels to outline
        options: Tracing tolerances (defaults if None)

    Returns:
        List of potrace curves in pixel coordinates (y down)

    Raises:
        TraceError: If potrace fails
    """
    options = options or TraceOptions()
    try:
        turnpolicy = TURN_POLICIES[options.turnpolicy]
    except KeyError:
        raise TraceError(f"Unknown turn policy {options.turnpolicy!r}") from None

    try:
        # potrace outlines the False pixels of a boolean bitmap
        bitmap = potrace.Bitmap(~foreground.astype(bool))
        path = bitmap.trace(
            turdsize=options.turdsize,
            turnpolicy=turnpolicy,
            alphamax=options.alphamax,
            opticurve=options.opticurve,
            opttolerance=options.opttolerance,
        )
        return list(path.curves)
    except Exception as e:
        raise TraceError(f"Tracing failed: {e}") from e


def _point(p, precision: int) -> str:
    return f"{format_number(p.x, precision)},{format_number(p.y, precision)}"


def curve_to_path_data(curve, precision: int = 2) -> PathData:
    """Render one closed potrace curve as an SVG subpath."""
    commands = [f"M{_point(curve.start_point, precision)}"]
    for segment in curve.segments:
        if segment.is_corner:
            commands.append(f"L{_point(segment.c, precision)}")
            commands.append(f"L{_point(segment.end_point, precision)}")
        else:
            commands.append(
                f"C{_point(segment.c1, precision)} "
                f"{_point(segment.c2, precision)} "
                f"{_point(segment.end_point, precision)}"
            )
    commands.append("Z")
    return " ".join(commands)


def curves_to_path_data(curves: list, precision: int = 2) -> List[PathData]:
    """Render potrace curves, one subpath string per curve."""
    return [curve_to_path_data(curve, precision) for curve in curves if len(curve.segments) > 0]


def trace_layer(
    mask: BinaryMask,
    options: Optional[TraceOptions] = None,
    background: Optional[RGB] = None,
    precision: int = 2,
) -> Layer:
    """Trace a band mask into a Layer filled with the band color.

    Args:
        mask: Binary mask of the band
        options: Tracing tolerances
        background: Explicit background color, None for transparent
        precision: Decimal places for coordinates

    Returns:
        Layer with one subpath per traced outline

    Raises:
        TraceError: If potrace fails on this mask
    """
    if mask.is_empty:
        return Layer(index=mask.index, color=mask.color, background=background)

    curves = trace_curves(mask.foreground, options)
    layer = Layer(
        index=mask.index,
        color=mask.color,
        curves=curves_to_path_data(curves, precision),
        background=background,
    )
    logger.debug("Band %d traced into %d curves", mask.index, len(layer.curves))
    return layer

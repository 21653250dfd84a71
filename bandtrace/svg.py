"""SVG composition: stack traced layers into one document."""

import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .types import RGB, InternalIOError, Layer

logger = logging.getLogger(__name__)

SVG_NS = "http://www.w3.org/2000/svg"

_FILL_ATTR = re.compile(r'fill="[^"]*"')


def color_to_hex(color: Sequence[int]) -> str:
    """Convert an RGB(A) tuple to #RRGGBB (alpha ignored)."""
    r, g, b = (max(0, min(255, int(c))) for c in color[:3])
    return f"#{r:02X}{g:02X}{b:02X}"


def format_number(x: float, precision: int = 2) -> str:
    """Format number with given precision, dropping trailing zeros."""
    formatted = f"{x:.{precision}f}"
    if "." in formatted:
        formatted = formatted.rstrip("0").rstrip(".")
    if formatted == "-0":
        formatted = "0"
    return formatted


def layer_to_element(layer: Layer) -> str:
    """Render a layer as a single filled path element."""
    return (
        f'<path fill="{color_to_hex(layer.color)}" stroke="none" '
        f'fill-rule="evenodd" d="{layer.path_data}"/>'
    )


def compose(
    width: int,
    height: int,
    layers: List[Layer],
    background: Optional[RGB] = None,
    keep_empty: bool = False,
) -> bytes:
    """Merge ordered layers into one SVG document.

    Layers are painted in list order, so the last one ends up on top.
    All layers share the viewBox "0 0 width height".

    Args:
        width: Canvas width in user units
        height: Canvas height in user units
        layers: Ordered layers
        background: Opaque background color; None keeps the canvas
            transparent unless a layer carries its own background
        keep_empty: Write layers without curves as paths with an empty "d"

    Returns:
        UTF-8 encoded SVG document
    """
    if background is None:
        background = next(
            (layer.background for layer in layers if layer.background is not None), None
        )

    elements = []
    if background is not None:
        elements.append(
            f'<rect width="{width}" height="{height}" fill="{color_to_hex(background)}"/>'
        )

    for layer in layers:
        if layer.is_empty and not keep_empty:
            continue
        elements.append(layer_to_element(layer))

    body = "\n  ".join(elements)
    svg = (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<svg xmlns="{SVG_NS}" width="{width}" height="{height}" viewBox="0 0 {width} {height}">\n'
        f"  {body}\n"
        "</svg>\n"
    )
    logger.debug("Composed %d elements on %dx%d canvas", len(elements), width, height)
    return svg.encode("utf-8")


def outline_svg(svg: Union[str, bytes]) -> bytes:
    """Turn every filled shape into a black outline for previewing paths."""
    text = svg.decode("utf-8") if isinstance(svg, bytes) else svg
    text = _FILL_ATTR.sub('fill="none" stroke="black" stroke-width="1"', text)
    text = text.replace(' stroke="none"', "")
    return text.encode("utf-8")


def save_svg(svg: Union[str, bytes], output_path: Union[str, Path]) -> None:
    """Save SVG content to file.

    Raises:
        InternalIOError: If the file cannot be written
    """
    data = svg.encode("utf-8") if isinstance(svg, str) else svg
    try:
        Path(output_path).write_bytes(data)
    except OSError as e:
        raise InternalIOError(f"Failed to write {output_path}: {e}") from e

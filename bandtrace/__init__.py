"""bandtrace: layered flat-color raster to SVG tracing.

Splits an image into a few brightness or color bands, traces each band's
mask with potrace and stacks the outlines into one SVG document.
"""

__version__ = "0.1.0"
__all__ = ["pipeline", "preprocess", "partition", "extract", "trace", "svg", "types"]

"""Integration tests for the full pipeline."""

import os
from xml.etree import ElementTree as ET

import numpy as np
import pytest

import bandtrace.pipeline as pipeline_module
from bandtrace.pipeline import Pipeline, process_image, run
from bandtrace.types import (
    DecodeError,
    EmptyInputError,
    PipelineConfig,
    Stage,
    TraceError,
    VectorizationError,
)

from conftest import png_bytes, red_square_pixels

NS = "{http://www.w3.org/2000/svg}"


def parse(svg: bytes) -> ET.Element:
    root = ET.fromstring(svg)
    assert root.tag == f"{NS}svg"
    return root


def hex_to_rgb(value: str) -> np.ndarray:
    return np.array([int(value[i:i + 2], 16) for i in (1, 3, 5)])


class TestSingleBand:
    """Single-band (color_count = 1) mode."""

    def test_one_path(self, black_rect_png):
        """One filled path plus a white background, viewBox matches the raster."""
        result = Pipeline().process(black_rect_png)
        root = parse(result.svg)

        paths = root.findall(f"{NS}path")
        assert len(paths) == 1
        assert paths[0].get("fill") == "#000000"
        assert paths[0].get("d")
        assert root.get("viewBox") == "0 0 120 80"
        assert root.find(f"{NS}rect").get("fill") == "#FFFFFF"

        assert result.mode == "single"
        assert result.stages == [
            Stage.RECEIVED, Stage.PREPROCESSED, Stage.SINGLE_TRACED, Stage.DONE
        ]

    def test_adaptive_threshold(self, black_rect_png):
        config = PipelineConfig(adaptive_threshold=True)
        root = parse(Pipeline(config).process(black_rect_png).svg)
        assert len(root.findall(f"{NS}path")) == 1

    def test_color_count_zero_falls_back(self, black_rect_png):
        """Counts below 1 take the single-band path."""
        result = Pipeline(PipelineConfig(color_count=0)).process(black_rect_png)
        assert result.mode == "single"

    def test_blank_image(self):
        """Nothing below the threshold still yields one, empty, path."""
        blank = png_bytes(np.full((80, 120, 3), 255, dtype=np.uint8))
        result = Pipeline().process(blank)
        root = parse(result.svg)
        paths = root.findall(f"{NS}path")

        assert len(paths) == 1
        assert paths[0].get("d") == ""
        assert paths[0].get("fill") == "#000000"
        assert root.find(f"{NS}rect").get("fill") == "#FFFFFF"
        assert result.layers == []


class TestMultiBand:
    """Multi-band decomposition."""

    def test_red_square_two_layers(self, red_square_png):
        """Red square on white gives a white layer and a red layer."""
        result = Pipeline(PipelineConfig(color_count=2)).process(red_square_png)
        root = parse(result.svg)
        paths = root.findall(f"{NS}path")

        assert len(paths) == 2
        fills = [hex_to_rgb(p.get("fill")) for p in paths]
        targets = [np.array([255, 255, 255]), np.array([255, 0, 0])]
        for target in targets:
            assert min(np.abs(f - target).max() for f in fills) <= 10
        assert all(p.get("d") for p in paths)
        assert root.find(f"{NS}rect") is None

        assert result.stages == [
            Stage.RECEIVED,
            Stage.PREPROCESSED,
            Stage.PARTITIONED,
            Stage.MASKED,
            Stage.TRACED,
            Stage.COMPOSED,
            Stage.DONE,
        ]

    def test_histogram_two_tone(self, red_square_png):
        """The histogram split keeps a minority color in its own layer."""
        config = PipelineConfig(color_count=2, strategy="histogram")
        result = Pipeline(config).process(red_square_png)
        fills = [p.get("fill") for p in parse(result.svg).findall(f"{NS}path")]

        assert [b.color for b in result.bands] == [(255, 0, 0), (255, 255, 255)]
        assert fills == ["#FF0000", "#FFFFFF"]

    def test_histogram_three_tone(self):
        """Black, dark red and white stripes give three layers, darkest first."""
        pixels = np.full((90, 90, 3), 255, dtype=np.uint8)
        pixels[:, :30] = [0, 0, 0]
        pixels[:, 30:60] = [128, 0, 0]
        config = PipelineConfig(color_count=3, strategy="histogram")
        result = Pipeline(config).process(png_bytes(pixels))
        fills = [p.get("fill") for p in parse(result.svg).findall(f"{NS}path")]

        assert [b.color for b in result.bands] == [(0, 0, 0), (128, 0, 0), (255, 255, 255)]
        assert fills == ["#000000", "#800000", "#FFFFFF"]

    @pytest.mark.parametrize("strategy", ["range", "histogram", "kmeans", "posterize"])
    @pytest.mark.parametrize("colors", [2, 3, 6])
    def test_layer_count_bounded(self, three_color_png, strategy, colors):
        """No strategy produces more layers than requested bands."""
        config = PipelineConfig(color_count=colors, strategy=strategy)
        result = Pipeline(config).process(three_color_png)
        paths = parse(result.svg).findall(f"{NS}path")

        assert len(paths) <= colors
        assert len(paths) == len(result.layers)
        assert all(p.get("d") for p in paths)

    def test_empty_bands_not_drawn(self):
        """Bins with no pixels never become layers."""
        pixels = np.full((60, 60, 3), 255, dtype=np.uint8)
        pixels[20:40, 20:40] = 0
        result = Pipeline(PipelineConfig(color_count=5)).process(png_bytes(pixels))

        assert len(result.bands) == 5
        assert sum(1 for b in result.bands if b.pixel_count == 0) == 3
        assert len(result.layers) == 2

    def test_bands_idempotent(self, red_square_png):
        """Deterministic strategies give identical descriptors on every run."""
        for strategy in ("range", "histogram"):
            config = PipelineConfig(color_count=3, strategy=strategy)
            first = Pipeline(config).process(red_square_png)
            second = Pipeline(config).process(red_square_png)

            assert first.bands == second.bands
            assert first.svg == second.svg

    def test_parallel_matches_serial(self, three_color_png):
        """Threaded band tracing keeps the original paint order."""
        serial = Pipeline(PipelineConfig(color_count=3)).process(three_color_png)
        threaded = Pipeline(PipelineConfig(color_count=3, workers=3)).process(three_color_png)

        assert threaded.svg == serial.svg
        assert [layer.index for layer in threaded.layers] == [layer.index for layer in serial.layers]

    def test_aspect_ratio(self):
        """viewBox follows the resized raster."""
        pixels = np.full((200, 400, 3), 255, dtype=np.uint8)
        pixels[50:150, 100:300] = [0, 0, 200]
        result = Pipeline(PipelineConfig(color_count=2, long_side=100)).process(png_bytes(pixels))

        assert (result.width, result.height) == (100, 50)
        assert parse(result.svg).get("viewBox") == "0 0 100 50"


class TestBandFailures:
    """Band failure policies."""

    @staticmethod
    def failing_trace(real_trace, bad_index):
        def trace(mask, *args, **kwargs):
            if mask.index == bad_index:
                raise TraceError("tracer crashed")
            return real_trace(mask, *args, **kwargs)

        return trace

    def test_abort(self, monkeypatch, red_square_png):
        """By default one failing band fails the request."""
        monkeypatch.setattr(
            pipeline_module, "trace_layer", self.failing_trace(pipeline_module.trace_layer, 1)
        )
        with pytest.raises(TraceError):
            Pipeline(PipelineConfig(color_count=2)).process(red_square_png)

    def test_skip(self, monkeypatch, red_square_png):
        """With the skip policy the band is left out and reported."""
        monkeypatch.setattr(
            pipeline_module, "trace_layer", self.failing_trace(pipeline_module.trace_layer, 1)
        )
        config = PipelineConfig(color_count=2, on_band_error="skip")
        result = Pipeline(config).process(red_square_png)

        assert len(result.layers) == 1
        assert len(result.diagnostics) == 1
        assert "band 1" in result.diagnostics[0]
        assert len(parse(result.svg).findall(f"{NS}path")) == 1

    def test_unexpected_error_wrapped(self, monkeypatch, red_square_png):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(pipeline_module, "partition", explode)
        with pytest.raises(VectorizationError, match="boom"):
            Pipeline(PipelineConfig(color_count=2)).process(red_square_png)


class TestInputErrors:
    """Failure scenarios for bad input."""

    def test_empty_upload(self, tmp_path, monkeypatch):
        """Empty bytes fail before any file is written."""
        monkeypatch.chdir(tmp_path)
        with pytest.raises(EmptyInputError):
            Pipeline(PipelineConfig(color_count=3)).process(b"")
        assert os.listdir(tmp_path) == []

    def test_not_an_image(self):
        with pytest.raises(DecodeError):
            run(b"<html>not an image</html>", color_count=2)


class TestStages:
    """Stage snapshots."""

    def test_no_files_by_default(self, tmp_path, monkeypatch, red_square_png):
        monkeypatch.chdir(tmp_path)
        Pipeline(PipelineConfig(color_count=2)).process(red_square_png)
        assert os.listdir(tmp_path) == []

    def test_stages_dir(self, tmp_path, red_square_png):
        stages_dir = tmp_path / "stages"
        result = Pipeline(PipelineConfig(color_count=2, stages_dir=stages_dir)).process(
            red_square_png
        )
        names = sorted(p.name for p in stages_dir.iterdir())

        assert f"trace-{result.request_id}-base.png" in names
        assert f"trace-{result.request_id}-band0.png" in names
        assert f"trace-{result.request_id}-band1.png" in names


class TestConvenience:
    """Module-level helpers."""

    def test_run(self, red_square_png):
        svg = run(red_square_png, color_count=2, target_long_side=100)
        root = parse(svg)

        assert root.get("viewBox") == "0 0 100 100"
        assert len(root.findall(f"{NS}path")) == 2

    def test_process_image(self, tmp_path, red_square_png):
        src = tmp_path / "square.png"
        src.write_bytes(red_square_png)
        out = tmp_path / "square.svg"

        svg = process_image(src, out, PipelineConfig(color_count=2))

        assert out.read_bytes() == svg

    def test_process_image_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            process_image(tmp_path / "nope.png")

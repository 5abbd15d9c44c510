"""Tests for the four-stage equalization pipeline on the reference device."""

import cv2
import numpy as np
import pytest

from hist_equalizer.processing.equalization import (
    STAGE_HISTOGRAM,
    STAGE_LUT,
    STAGE_PROJECTION,
    STAGE_SCAN,
    EqualizationPipeline,
    PipelineState,
    check_cumulative,
    check_histogram,
    check_lut,
    equalize,
)
from hist_equalizer.processing.image import Image
from hist_equalizer.utils.errors import ConfigurationError, DispatchError, ProcessingError


class TestEndToEnd:
    """Whole-pipeline behaviour."""

    def test_checkerboard(self, pipeline, checkerboard):
        """A 0/255 checkerboard is already equalized."""
        result = pipeline.run(checkerboard)

        assert result.histogram[0] == 8
        assert result.histogram[255] == 8
        assert result.histogram.sum() == 16
        assert result.cumulative[0] == 8
        assert result.cumulative[254] == 8
        assert result.cumulative[255] == 16
        assert result.lut[0] == 0
        assert result.lut[255] == 255
        np.testing.assert_array_equal(result.image.samples, checkerboard.samples)

    def test_constant_image_identity(self, pipeline):
        """A single-level image gets the identity LUT and is unchanged."""
        image = Image.from_array(np.full((9, 11), 123, dtype=np.uint8))

        result = pipeline.run(image)

        assert result.histogram[123] == 99
        np.testing.assert_array_equal(result.lut, np.arange(256))
        np.testing.assert_array_equal(result.image.samples, image.samples)

    def test_matches_opencv(self, pipeline, gray_image):
        """Output agrees with cv2.equalizeHist to within one level."""
        expected = cv2.equalizeHist(gray_image.to_array())

        result = pipeline.run(gray_image)

        diff = np.abs(result.image.to_array().astype(np.int16) - expected.astype(np.int16))
        assert diff.max() <= 1

    def test_stretches_contrast(self, pipeline, gray_image):
        """A low-contrast image is stretched to the full range."""
        result = pipeline.run(gray_image)
        output = result.image.samples

        assert output.min() == 0
        assert output.max() == 255

    def test_histogram_and_scan_invariants(self, pipeline, gray_image):
        """Histogram sums to the pixel count and the scan is its running sum."""
        result = pipeline.run(gray_image)

        expected = np.bincount(gray_image.samples, minlength=256)
        np.testing.assert_array_equal(result.histogram, expected)
        np.testing.assert_array_equal(result.cumulative, np.cumsum(expected))
        assert result.cumulative[-1] == gray_image.pixel_count

    def test_partials_reduce_to_histogram(self, pipeline, gray_image):
        """Every group's partial histogram is folded into the result."""
        result = pipeline.run(gray_image)
        groups = result.partition.group_count

        assert groups > 1
        partials = result.partials.reshape(groups, 256)
        np.testing.assert_array_equal(partials.sum(axis=0), result.histogram)

    def test_padding_does_not_leak(self, reference_device):
        """Pixel counts that are not a multiple of the grid size are exact."""
        rng = np.random.default_rng(5)
        image = Image.from_array(rng.integers(1, 256, size=(13, 17), dtype=np.uint8))
        pipeline = EqualizationPipeline(reference_device, local_size=64)

        result = pipeline.run(image)

        assert result.partition.padding > 0
        assert result.histogram[0] == 0
        assert result.histogram.sum() == 221
        assert result.image.size == image.size

    def test_repeat_runs_are_identical(self, pipeline, gray_image):
        """Buffers are reset between runs."""
        first = pipeline.run(gray_image)
        second = pipeline.run(gray_image)

        np.testing.assert_array_equal(first.histogram, second.histogram)
        np.testing.assert_array_equal(first.image.samples, second.image.samples)

    def test_equalizing_twice_is_valid(self, pipeline, gray_image):
        """Running on an already equalized image still meets every invariant."""
        first = pipeline.run(gray_image)
        second = pipeline.run(first.image)

        check_histogram(second.histogram, gray_image.pixel_count)
        check_cumulative(second.cumulative, gray_image.pixel_count)
        check_lut(second.lut)
        assert second.image.samples.min() == 0
        assert second.image.samples.max() == 255

    def test_input_not_modified(self, pipeline, gray_image):
        """The input image is left untouched."""
        before = gray_image.samples.copy()
        pipeline.run(gray_image)
        np.testing.assert_array_equal(gray_image.samples, before)


class TestChannels:
    """Per-channel equalization."""

    def test_selected_channel_only(self, pipeline, rgb_image):
        """Only the chosen channel changes."""
        result = pipeline.run(rgb_image, channel=1)
        output = result.image

        np.testing.assert_array_equal(output.channel(0), rgb_image.channel(0))
        np.testing.assert_array_equal(output.channel(2), rgb_image.channel(2))
        assert result.histogram.sum() == rgb_image.pixel_count

        expected = cv2.equalizeHist(rgb_image.channel(1).reshape(20, 30)).reshape(-1)
        diff = np.abs(output.channel(1).astype(np.int16) - expected.astype(np.int16))
        assert diff.max() <= 1

    def test_all_channels(self, pipeline, rgb_image):
        """Every channel is equalized with its own histogram."""
        results = pipeline.run_all_channels(rgb_image)

        assert [r.channel for r in results] == [0, 1, 2]
        final = results[-1].image
        for channel in range(3):
            expected = cv2.equalizeHist(rgb_image.channel(channel).reshape(20, 30)).reshape(-1)
            diff = np.abs(final.channel(channel).astype(np.int16) - expected.astype(np.int16))
            assert diff.max() <= 1

    def test_all_channels_keeps_rgba_alpha(self, pipeline):
        """Transparency is not equalized in all-channel mode."""
        rng = np.random.default_rng(21)
        array = rng.integers(40, 120, size=(10, 10, 4), dtype=np.uint8)
        array[:, :, 3] = 128
        array[:5, :, 3] = 255
        image = Image.from_array(array)

        results = pipeline.run_all_channels(image)

        assert [r.channel for r in results] == [0, 1, 2]
        final = results[-1].image
        np.testing.assert_array_equal(final.channel(3), image.channel(3))
        assert final.channel(0).max() == 255

    def test_all_channels_keeps_la_alpha(self, pipeline):
        """Grey + alpha equalizes the grey channel only."""
        array = np.zeros((4, 6, 2), dtype=np.uint8)
        array[:, :, 0] = np.arange(24).reshape(4, 6) + 100
        array[:, :, 1] = 77
        image = Image.from_array(array)

        results = pipeline.run_all_channels(image)

        assert [r.channel for r in results] == [0]
        final = results[-1].image
        np.testing.assert_array_equal(final.channel(1), image.channel(1))
        assert final.channel(0).min() == 0
        assert final.channel(0).max() == 255

    def test_channel_out_of_range(self, pipeline, gray_image):
        """Channels beyond the image's channel count are rejected."""
        with pytest.raises(ConfigurationError) as excinfo:
            pipeline.run(gray_image, channel=1)
        assert excinfo.value.setting_name == "channel"


class TestOrchestrator:
    """State machine, profiling and failure handling."""

    def test_state_sequence(self, pipeline, checkerboard):
        """A successful run walks every state in order and ends DONE."""
        pipeline.run(checkerboard)

        assert pipeline.state == PipelineState.DONE
        assert pipeline.history == [
            PipelineState.INIT,
            PipelineState.HISTOGRAM_DISPATCHED,
            PipelineState.HISTOGRAM_READ_BACK,
            PipelineState.SCAN_DISPATCHED,
            PipelineState.SCAN_READ_BACK,
            PipelineState.LUT_DISPATCHED,
            PipelineState.LUT_READ_BACK,
            PipelineState.PROJECTION_DISPATCHED,
            PipelineState.PROJECTION_READ_BACK,
            PipelineState.DONE,
        ]

    def test_events_per_stage(self, pipeline, gray_image):
        """One profiling event per stage, in pipeline order."""
        result = pipeline.run(gray_image)

        assert [e.stage for e in result.events] == [STAGE_HISTOGRAM, STAGE_SCAN, STAGE_LUT, STAGE_PROJECTION]
        assert all(e.elapsed_ns >= 0 for e in result.events)
        assert result.total_time_ns == sum(e.elapsed_ns for e in result.events)

    def test_dispatch_count(self, pipeline, checkerboard):
        """Accumulate, reduce, scan, LUT and back-projection are dispatched once each."""
        pipeline.run(checkerboard)
        assert pipeline.queue.dispatch_count == 5

    def test_kernel_failure_ends_failed(self, pipeline, checkerboard):
        """An exception inside a kernel aborts the run in FAILED."""
        def broken(*args):
            raise RuntimeError("device lost")

        pipeline.program["cumulative_scan"].function = broken

        with pytest.raises(DispatchError) as excinfo:
            pipeline.run(checkerboard)

        assert excinfo.value.kernel_name == "cumulative_scan"
        assert pipeline.state == PipelineState.FAILED
        assert pipeline.history[-2] == PipelineState.HISTOGRAM_READ_BACK
        assert PipelineState.SCAN_DISPATCHED not in pipeline.history

    def test_bad_lut_detected(self, pipeline, checkerboard):
        """A decreasing LUT fails the read-back check."""
        def reversed_lut(partition, cumulative, lut, total_pixels):
            lut[:256] = 255 - np.arange(256)

        pipeline.program["lut_build"].function = reversed_lut

        with pytest.raises(ProcessingError) as excinfo:
            pipeline.run(checkerboard)

        assert excinfo.value.step == "lut"
        assert pipeline.state == PipelineState.FAILED

    def test_validation_disabled(self, reference_device, checkerboard):
        """Read-back checks can be switched off."""
        pipeline = EqualizationPipeline(reference_device, validate=False)

        def reversed_lut(partition, cumulative, lut, total_pixels):
            lut[:256] = 255 - np.arange(256)

        pipeline.program["lut_build"].function = reversed_lut
        result = pipeline.run(checkerboard)

        assert pipeline.state == PipelineState.DONE
        assert result.image.samples[0] == 255

    def test_workgroup_size_too_large(self, reference_device):
        """Workgroup sizes beyond the device limit are a configuration error."""
        with pytest.raises(ConfigurationError):
            EqualizationPipeline(reference_device, local_size=reference_device.info.max_workgroup_size + 1)


class TestReadbackChecks:
    """Tests for the stage output checks."""

    def test_histogram_wrong_total(self):
        histogram = np.zeros(256, dtype=np.uint32)
        histogram[3] = 5
        with pytest.raises(ProcessingError) as excinfo:
            check_histogram(histogram, 6)
        assert excinfo.value.step == "histogram"

    def test_cumulative_not_monotonic(self):
        cumulative = np.arange(256, dtype=np.uint32)
        cumulative[10] = 0
        with pytest.raises(ProcessingError) as excinfo:
            check_cumulative(cumulative, 255)
        assert excinfo.value.step == "scan"

    def test_lut_out_of_range(self):
        lut = np.arange(256, dtype=np.uint32)
        lut[255] = 256
        with pytest.raises(ProcessingError):
            check_lut(lut)

    def test_valid_outputs_pass(self):
        histogram = np.ones(256, dtype=np.uint32)
        check_histogram(histogram, 256)
        check_cumulative(np.cumsum(histogram), 256)
        check_lut(np.arange(256))


class TestEqualize:
    """Tests for the equalize() convenience function."""

    def test_grayscale(self, reference_device, gray_image):
        results = equalize(gray_image, device=reference_device)
        assert len(results) == 1
        assert results[0].channel == 0

    def test_single_channel_of_rgb(self, reference_device, rgb_image):
        results = equalize(rgb_image, device=reference_device, channel=2)
        assert len(results) == 1
        assert results[0].channel == 2

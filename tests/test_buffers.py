"""Tests for the device buffer manager."""

import numpy as np
import pytest

from hist_equalizer.utils.errors import AllocationError, TransferError
from hist_equalizer.utils.gpu_resources import AccessMode, BufferManager, kernel_view


class TestAllocation:
    """Tests for BufferManager.allocate."""

    def test_zero_initialised(self, reference_device):
        """New buffers read back as zeros."""
        with BufferManager(reference_device) as buffers:
            buf = buffers.allocate(1024, AccessMode.READ_WRITE, "scratch")
            data = buffers.download(buf)
        assert data.dtype == np.uint32
        assert data.size == 256
        assert not data.any()

    def test_size_rounded_to_elements(self, reference_device):
        """Sizes round up to whole uint32 elements."""
        with BufferManager(reference_device) as buffers:
            buf = buffers.allocate(5, AccessMode.READ_WRITE)
            assert buf.size_bytes == 8
            assert buf.count == 2

    def test_over_limit(self, reference_device):
        """Requests above the device limit raise AllocationError."""
        limit = reference_device.info.max_buffer_size
        with BufferManager(reference_device) as buffers:
            with pytest.raises(AllocationError) as excinfo:
                buffers.allocate(limit + 4, AccessMode.READ_ONLY, "huge")
        assert excinfo.value.size_bytes == limit + 4

    def test_context_manager_releases(self, reference_device):
        """Leaving the context releases every buffer."""
        with BufferManager(reference_device) as buffers:
            first = buffers.allocate(16)
            second = buffers.allocate(16)
            assert len(buffers) == 2
        assert first.released
        assert second.released
        assert len(buffers) == 0


class TestTransfers:
    """Tests for upload, download and fill."""

    def test_upload_download(self, reference_device):
        """Uploaded data comes back unchanged."""
        data = np.arange(10, dtype=np.uint8)
        with BufferManager(reference_device) as buffers:
            buf = buffers.allocate(64, AccessMode.READ_ONLY, "image")
            buffers.upload(buf, data)
            result = buffers.download(buf)
        np.testing.assert_array_equal(result[:10], data)
        assert not result[10:].any()

    def test_download_is_a_copy(self, reference_device):
        """Changing downloaded data leaves the device copy intact."""
        with BufferManager(reference_device) as buffers:
            buf = buffers.allocate(16)
            buffers.upload(buf, [1, 2, 3, 4])
            first = buffers.download(buf)
            first[:] = 0
            np.testing.assert_array_equal(buffers.download(buf), [1, 2, 3, 4])

    def test_upload_too_large(self, reference_device):
        """Uploads that do not fit raise TransferError."""
        with BufferManager(reference_device) as buffers:
            buf = buffers.allocate(8, label="small")
            with pytest.raises(TransferError) as excinfo:
                buffers.upload(buf, np.zeros(3, dtype=np.uint32))
        assert excinfo.value.buffer_label == "small"

    def test_fill(self, reference_device):
        """Fill sets every element."""
        with BufferManager(reference_device) as buffers:
            buf = buffers.allocate(40)
            buffers.fill(buf, 7)
            np.testing.assert_array_equal(buffers.download(buf), np.full(10, 7))

    def test_fill_out_of_range(self, reference_device):
        """Fill values must fit uint32."""
        with BufferManager(reference_device) as buffers:
            buf = buffers.allocate(4)
            with pytest.raises(TransferError):
                buffers.fill(buf, -1)

    def test_released_buffer(self, reference_device):
        """Transfers on a released buffer raise TransferError."""
        buffers = BufferManager(reference_device)
        buf = buffers.allocate(16, label="gone")
        buffers.release(buf)
        with pytest.raises(TransferError):
            buffers.download(buf)
        with pytest.raises(TransferError):
            buffers.upload(buf, [1])


class TestKernelView:
    """Tests for the reference kernel views."""

    def test_read_only_view(self, reference_device):
        """Kernels cannot write READ_ONLY buffers."""
        with BufferManager(reference_device) as buffers:
            buf = buffers.allocate(16, AccessMode.READ_ONLY)
            view = kernel_view(buf)
            assert not view.flags.writeable
            with pytest.raises(ValueError):
                view[0] = 1

    def test_writable_view(self, reference_device):
        """Kernel writes to WRITE_ONLY buffers are visible on download."""
        with BufferManager(reference_device) as buffers:
            buf = buffers.allocate(16, AccessMode.WRITE_ONLY)
            kernel_view(buf)[2] = 9
            assert buffers.download(buf)[2] == 9

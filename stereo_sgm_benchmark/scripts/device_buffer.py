# SPDX-FileCopyrightText: NVIDIA CORPORATION & AFFILIATES
# Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""Fixed-size accelerator buffers with size-exact host transfers."""

import logging

import numpy as np

from benchmark_errors import DeviceError, PreconditionError

logger = logging.getLogger(__name__)

BITS_PER_BYTE = 8


def compute_buffer_size(width: int, height: int, bits_per_pixel: int) -> int:
    """Number of bytes needed for a width x height image.

    Raises:
        PreconditionError: if the dimensions are not positive or the total bit
            count is not a whole number of bytes.
    """
    if width <= 0 or height <= 0:
        raise PreconditionError(f'Image dimensions must be positive, got {width}x{height}')
    if bits_per_pixel <= 0:
        raise PreconditionError(f'Bits per pixel must be positive, got {bits_per_pixel}')

    total_bits = width * height * bits_per_pixel
    if total_bits % BITS_PER_BYTE != 0:
        raise PreconditionError(
            f'{width}x{height} image at {bits_per_pixel} bits per pixel is not byte aligned '
            f'({total_bits} bits)')
    return total_bits // BITS_PER_BYTE


class DeviceBuffer:
    """Accelerator-resident memory block of an immutable size."""

    def __init__(self, accelerator, size_bytes):
        """Allocate the device block.

        Args:
            accelerator: Accelerator that owns the memory
            size_bytes: Exact size of the block in bytes
        """
        if size_bytes <= 0:
            raise DeviceError(f'Device buffer size must be positive, got {size_bytes}')
        self._accelerator = accelerator
        self._size_bytes = size_bytes
        self._handle = None
        self._handle = accelerator.allocate(size_bytes)

    @property
    def size_bytes(self):
        return self._size_bytes

    @property
    def data(self):
        """Device handle to pass to the compute call."""
        self._check_alive()
        return self._handle

    @property
    def released(self):
        return self._handle is None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()

    def __del__(self):
        """Fallback release in case the owner never calls release()."""
        try:
            self.release()
        except DeviceError as e:
            logger.warning('Failed to release device buffer: %s', e)

    def release(self):
        """Free the device allocation. Safe to call more than once."""
        handle = getattr(self, '_handle', None)
        if handle is None:
            return
        self._handle = None
        self._accelerator.free(handle)

    def _check_alive(self):
        if self._handle is None:
            raise DeviceError('Device buffer used after release')

    def _check_size(self, host_array, direction):
        if host_array.nbytes != self._size_bytes:
            raise DeviceError(
                f'{direction} size mismatch: host array has {host_array.nbytes} bytes, '
                f'device buffer has {self._size_bytes} bytes')

    def upload(self, host_array):
        """Copy exactly `size_bytes` bytes from a host array into the device block."""
        self._check_alive()
        self._check_size(host_array, 'Upload')
        if not host_array.flags.c_contiguous:
            host_array = np.ascontiguousarray(host_array)
        self._accelerator.copy_to_device(self._handle, host_array)

    def download(self, host_array):
        """Copy exactly `size_bytes` bytes from the device block into a host array.

        The destination must be C-contiguous and writeable.

        Returns:
            The destination array
        """
        self._check_alive()
        self._check_size(host_array, 'Download')
        if not host_array.flags.c_contiguous or not host_array.flags.writeable:
            raise DeviceError('Download destination must be a writeable C-contiguous array')
        self._accelerator.copy_to_host(host_array, self._handle)
        return host_array

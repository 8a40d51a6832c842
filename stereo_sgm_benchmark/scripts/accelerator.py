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

"""Accelerator backends used by the device buffers and the stereo matchers."""

from abc import ABC, abstractmethod
import itertools
import logging

import numpy as np

from benchmark_errors import DeviceError

logger = logging.getLogger(__name__)

SUPPORTED_DEVICES = ('cuda', 'host')


class Accelerator(ABC):
    """Minimal memory and synchronization interface of a compute device.

    Allocations are identified by integer handles. For CUDA the handle is the
    device pointer, so it can be passed straight to libraries that accept raw
    device memory.
    """

    name = None

    @abstractmethod
    def allocate(self, size_bytes):
        """Allocate `size_bytes` bytes and return the allocation handle."""
        pass

    @abstractmethod
    def free(self, handle):
        """Release an allocation returned by `allocate`."""
        pass

    @abstractmethod
    def copy_to_device(self, handle, host_array):
        """Copy all bytes of a contiguous host array into the allocation."""
        pass

    @abstractmethod
    def copy_to_host(self, host_array, handle):
        """Copy `host_array.nbytes` bytes from the allocation into the host array."""
        pass

    @abstractmethod
    def synchronize(self):
        """Block until all previously issued device work has finished."""
        pass

    def describe(self):
        return self.name

    def close(self):
        """Release any device state held by the accelerator."""
        pass


class HostAccelerator(Accelerator):
    """Accelerator whose "device" memory is ordinary numpy storage.

    Used for CPU-only runs of the OpenCV SGBM matcher and for checking the
    buffer transfer path without a GPU.
    """

    name = 'host'

    def __init__(self):
        self._blocks = {}
        self._next_handle = itertools.count(1)

    def allocate(self, size_bytes):
        if size_bytes <= 0:
            raise DeviceError(f'Cannot allocate {size_bytes} bytes on host accelerator')
        handle = next(self._next_handle)
        self._blocks[handle] = np.zeros(size_bytes, dtype=np.uint8)
        logger.debug('Allocated host block %d (%d bytes)', handle, size_bytes)
        return handle

    def free(self, handle):
        if self._blocks.pop(handle, None) is None:
            raise DeviceError(f'Unknown host allocation {handle}')

    def block(self, handle):
        """Return the raw byte storage behind an allocation."""
        try:
            return self._blocks[handle]
        except KeyError:
            raise DeviceError(f'Unknown host allocation {handle}') from None

    def copy_to_device(self, handle, host_array):
        block = self.block(handle)
        if host_array.nbytes > block.nbytes:
            raise DeviceError(
                f'Host to device copy of {host_array.nbytes} bytes exceeds '
                f'allocation of {block.nbytes} bytes')
        block[:host_array.nbytes] = host_array.reshape(-1).view(np.uint8)

    def copy_to_host(self, host_array, handle):
        block = self.block(handle)
        if host_array.nbytes > block.nbytes:
            raise DeviceError(
                f'Device to host copy of {host_array.nbytes} bytes exceeds '
                f'allocation of {block.nbytes} bytes')
        host_array.reshape(-1).view(np.uint8)[:] = block[:host_array.nbytes]

    def synchronize(self):
        # Host copies and host matchers complete before returning.
        pass

    def close(self):
        if self._blocks:
            logger.warning('Host accelerator closed with %d live allocations', len(self._blocks))
        self._blocks.clear()


def create_accelerator(name, device_id=0, verbose=False):
    """Create an accelerator by name.

    Args:
        name: One of SUPPORTED_DEVICES
        device_id: CUDA device ordinal (ignored for the host accelerator)
        verbose: Log device details

    Returns:
        Accelerator instance
    """
    if name == 'host':
        return HostAccelerator()
    if name == 'cuda':
        # cuda-python is only required when a CUDA device is requested.
        try:
            from cuda_accelerator import CudaAccelerator
        except ImportError as e:
            raise DeviceError(f'CUDA device requested but cuda-python is unavailable: {e}') from e
        return CudaAccelerator(device_id=device_id, verbose=verbose)
    raise DeviceError(f'Unsupported device "{name}", expected one of {SUPPORTED_DEVICES}')

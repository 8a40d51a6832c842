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

"""CUDA accelerator built on the cuda-python runtime and driver bindings."""

import logging

from cuda.bindings import driver as cuda_driver
from cuda.bindings import runtime as cuda_runtime

from accelerator import Accelerator
from benchmark_errors import DeviceError

logger = logging.getLogger(__name__)


class CudaAccelerator(Accelerator):
    """Device memory and completion barrier for one CUDA device."""

    name = 'cuda'

    def __init__(self, device_id=0, verbose=False):
        """Initialize CUDA and select the device.

        Args:
            device_id: CUDA device ordinal
            verbose: Log the selected device name
        """
        self.device_id = device_id
        self.verbose = verbose
        self.device_name = 'Unknown'

        self.check_cuda_availability()

        err, = cuda_runtime.cudaSetDevice(device_id)
        if err != cuda_runtime.cudaError_t.cudaSuccess:
            raise DeviceError(f'Failed to select CUDA device {device_id}: error code {err}')

    def check_cuda_availability(self):
        """Check if CUDA is available and the requested device exists."""
        err, = cuda_driver.cuInit(0)
        if err != cuda_driver.CUresult.CUDA_SUCCESS:
            raise DeviceError(f'CUDA initialization failed with error code {err}')

        err, device_count = cuda_driver.cuDeviceGetCount()
        if err != cuda_driver.CUresult.CUDA_SUCCESS:
            raise DeviceError(f'Failed to get device count: error code {err}')

        if device_count == 0:
            raise DeviceError('No CUDA devices found')

        if self.device_id >= device_count:
            raise DeviceError(
                f'CUDA device {self.device_id} requested but only {device_count} available')

        err, device = cuda_driver.cuDeviceGet(self.device_id)
        if err != cuda_driver.CUresult.CUDA_SUCCESS:
            raise DeviceError(f'Failed to get device: error code {err}')

        err, name = cuda_driver.cuDeviceGetName(100, device)
        if err == cuda_driver.CUresult.CUDA_SUCCESS:
            self.device_name = name.split(b'\0', 1)[0].decode()

        if self.verbose:
            logger.info('Using CUDA device: %s', self.device_name)
            logger.info('CUDA device count: %d', device_count)

    def describe(self):
        return f'cuda:{self.device_id} ({self.device_name})'

    def allocate(self, size_bytes):
        err, d_ptr = cuda_runtime.cudaMalloc(size_bytes)
        if err != cuda_runtime.cudaError_t.cudaSuccess:
            raise DeviceError(f'Failed to allocate {size_bytes} bytes of device memory: '
                              f'error code {err}')
        return int(d_ptr)

    def free(self, handle):
        err, = cuda_runtime.cudaFree(handle)
        if err != cuda_runtime.cudaError_t.cudaSuccess:
            raise DeviceError(f'Failed to free device memory: error code {err}')

    def copy_to_device(self, handle, host_array):
        err, = cuda_runtime.cudaMemcpy(
            handle,
            host_array.ctypes.data,
            host_array.nbytes,
            cuda_runtime.cudaMemcpyKind.cudaMemcpyHostToDevice
        )
        if err != cuda_runtime.cudaError_t.cudaSuccess:
            raise DeviceError(f'Failed to copy data to device: error code {err}')

    def copy_to_host(self, host_array, handle):
        err, = cuda_runtime.cudaMemcpy(
            host_array.ctypes.data,
            handle,
            host_array.nbytes,
            cuda_runtime.cudaMemcpyKind.cudaMemcpyDeviceToHost
        )
        if err != cuda_runtime.cudaError_t.cudaSuccess:
            raise DeviceError(f'Failed to copy data to host: error code {err}')

    def synchronize(self):
        err, = cuda_runtime.cudaDeviceSynchronize()
        if err != cuda_runtime.cudaError_t.cudaSuccess:
            raise DeviceError(f'Failed to synchronize CUDA device: error code {err}')

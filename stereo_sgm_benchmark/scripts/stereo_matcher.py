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

"""Semi-global matching backends behind a device-buffer execution interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging

import cv2
import numpy as np

from benchmark_errors import PreconditionError

logger = logging.getLogger(__name__)

SUPPORTED_DISPARITY_SIZES = (64, 128, 256)
SUPPORTED_INPUT_DEPTHS = (8, 16)
OUTPUT_DEPTH = 16
# Buffers handed to execute() live on the accelerator.
RESIDENCY_DEVICE = 'device'

# OpenCV stereo matchers return fixed-point disparities with 4 fractional bits.
OPENCV_DISP_SCALE = 16

# Defaults follow libSGM.
DEFAULT_MATCHER_PARAMS = {
    'P1': 10,
    'P2': 120,
    'uniqueness_ratio': 5,
    'min_disparity': 0,
    'disp12_max_diff': 1,
    'block_size': 3,
}

_DEPTH_DTYPES = {8: np.uint8, 16: np.uint16}


@dataclass(frozen=True)
class MatcherConfig:
    """Fixed geometry and formats a matcher is configured for."""

    width: int
    height: int
    disp_size: int
    input_depth: int
    output_depth: int = OUTPUT_DEPTH
    residency: str = RESIDENCY_DEVICE

    def validate(self):
        if self.width <= 0 or self.height <= 0:
            raise PreconditionError(
                f'Image dimensions must be positive, got {self.width}x{self.height}')
        if self.disp_size not in SUPPORTED_DISPARITY_SIZES:
            raise PreconditionError('disparity size must be 64, 128 or 256.')
        if self.input_depth not in SUPPORTED_INPUT_DEPTHS:
            raise PreconditionError(
                f'input depth must be 8 or 16 bits, got {self.input_depth}.')
        if self.output_depth != OUTPUT_DEPTH:
            raise PreconditionError(
                f'output depth must be {OUTPUT_DEPTH} bits, got {self.output_depth}.')
        if self.residency != RESIDENCY_DEVICE:
            raise PreconditionError(
                f'Unsupported memory residency "{self.residency}", '
                f'expected "{RESIDENCY_DEVICE}".')

    @property
    def input_dtype(self):
        return _DEPTH_DTYPES[self.input_depth]

    @property
    def shape(self):
        return (self.height, self.width)


class BaseStereoMatcher(ABC):
    """Stereo matcher executing on accelerator-resident buffers.

    Subclasses read the left/right images from, and write the int16 disparity
    map to, buffers owned by `accelerator`. Work may still be in flight when
    execute() returns; callers synchronize the accelerator before timing or
    downloading.
    """

    name = None
    # Disparity values are fixed point in units of 1 / subpixel_scale pixels.
    subpixel_scale = 1

    def __init__(self, accelerator, params=None):
        self.accelerator = accelerator
        self.params = dict(DEFAULT_MATCHER_PARAMS)
        if params:
            unknown = set(params) - set(DEFAULT_MATCHER_PARAMS)
            if unknown:
                raise PreconditionError(f'Unknown matcher parameters: {sorted(unknown)}')
            for key, value in params.items():
                # bool is an int subclass; reject it explicitly.
                if isinstance(value, bool) or not isinstance(value, int):
                    raise PreconditionError(
                        f'Matcher parameter "{key}" must be an integer, got {value!r}')
            self.params.update(params)
        self.config = None

    def configure(self, config):
        """Validate and apply the geometry and formats for subsequent executes."""
        config.validate()
        self.config = config
        try:
            self._configure(config)
        except cv2.error as e:
            self.config = None
            raise PreconditionError(f'{self.name} rejected its parameters: {e}') from e
        logger.debug('%s configured for %dx%d, disp_size=%d, input_depth=%d',
                     self.name, config.width, config.height, config.disp_size,
                     config.input_depth)

    def execute(self, left, right, disparity):
        """Compute the disparity of device buffers `left`/`right` into `disparity`."""
        if self.config is None:
            raise PreconditionError(f'{self.name} executed before configure()')
        self._execute(left, right, disparity)

    def invalid_disparity(self):
        """Sentinel written for pixels without a valid disparity."""
        return (self.params['min_disparity'] - 1) * self.subpixel_scale

    def close(self):
        pass

    @abstractmethod
    def _configure(self, config):
        pass

    @abstractmethod
    def _execute(self, left, right, disparity):
        pass


class OpenCVCudaStereoSGM(BaseStereoMatcher):
    """cv2.cuda.StereoSGM operating in place on CUDA device buffers."""

    name = 'opencv_cuda_sgm'
    subpixel_scale = OPENCV_DISP_SCALE

    def __init__(self, accelerator, params=None):
        super().__init__(accelerator, params)
        if accelerator.name != 'cuda':
            raise PreconditionError(
                f'{self.name} requires the cuda device, got "{accelerator.name}"')
        if cv2.cuda.getCudaEnabledDeviceCount() == 0:
            raise PreconditionError(
                'OpenCV was built without CUDA support; use --matcher opencv_sgbm')
        self.stereo = None

    def _configure(self, config):
        self.stereo = cv2.cuda.createStereoSGM(
            minDisparity=self.params['min_disparity'],
            numDisparities=config.disp_size,
            P1=self.params['P1'],
            P2=self.params['P2'],
            uniquenessRatio=self.params['uniqueness_ratio'],
            mode=cv2.STEREO_SGBM_MODE_HH4,
        )
        self._input_type = cv2.CV_8UC1 if config.input_depth == 8 else cv2.CV_16UC1

    def _wrap(self, handle, cv_type):
        return cv2.cuda.createGpuMatFromCudaMemory(
            self.config.height, self.config.width, cv_type, handle)

    def _execute(self, left, right, disparity):
        d_left = self._wrap(left, self._input_type)
        d_right = self._wrap(right, self._input_type)
        d_disparity = self._wrap(disparity, cv2.CV_16SC1)
        self.stereo.compute(d_left, d_right, d_disparity)


class OpenCVStereoSGBM(BaseStereoMatcher):
    """cv2.StereoSGBM on the host, staging through the accelerator buffers.

    The staging copies are part of every execute and therefore of the measured
    time. 16-bit inputs are scaled jointly to 8 bits since StereoSGBM only
    accepts 8-bit images.
    """

    name = 'opencv_sgbm'
    subpixel_scale = OPENCV_DISP_SCALE

    def _configure(self, config):
        block_size = self.params['block_size']
        self.stereo = cv2.StereoSGBM_create(
            minDisparity=self.params['min_disparity'],
            numDisparities=config.disp_size,
            blockSize=block_size,
            P1=self.params['P1'] * block_size,
            P2=self.params['P2'] * block_size,
            disp12MaxDiff=self.params['disp12_max_diff'],
            uniquenessRatio=self.params['uniqueness_ratio'],
            mode=cv2.STEREO_SGBM_MODE_HH4,
        )
        self._left = np.empty(config.shape, dtype=config.input_dtype)
        self._right = np.empty(config.shape, dtype=config.input_dtype)
        self._disparity = np.empty(config.shape, dtype=np.int16)

    def _to_8bit(self, left, right):
        if left.dtype == np.uint8:
            return left, right
        peak = max(int(left.max()), int(right.max()), 1)
        alpha = 255.0 / peak
        return cv2.convertScaleAbs(left, alpha=alpha), cv2.convertScaleAbs(right, alpha=alpha)

    def _execute(self, left, right, disparity):
        self.accelerator.copy_to_host(self._left, left)
        self.accelerator.copy_to_host(self._right, right)
        left_8u, right_8u = self._to_8bit(self._left, self._right)
        self._disparity[...] = self.stereo.compute(left_8u, right_8u)
        self.accelerator.copy_to_device(disparity, self._disparity)


STEREO_MATCHERS = {
    OpenCVCudaStereoSGM.name: OpenCVCudaStereoSGM,
    OpenCVStereoSGBM.name: OpenCVStereoSGBM,
}


def create_stereo_matcher(name, accelerator, params=None):
    """Create a stereo matcher backend by name."""
    if name not in STEREO_MATCHERS:
        raise PreconditionError(
            f'Unsupported matcher "{name}", expected one of {sorted(STEREO_MATCHERS)}')
    return STEREO_MATCHERS[name](accelerator, params)

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

"""Base class for SGM benchmark drivers."""

from abc import ABC, abstractmethod
import json
import logging
import os

import cv2
import numpy as np

from accelerator import create_accelerator
from benchmark_errors import BenchmarkError, PreconditionError
from device_buffer import DeviceBuffer, compute_buffer_size
from stereo_matcher import (OUTPUT_DEPTH, SUPPORTED_INPUT_DEPTHS, MatcherConfig,
                            create_stereo_matcher)

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

_CV_DEPTH_NAMES = {
    np.dtype(np.uint8): '8U',
    np.dtype(np.int8): '8S',
    np.dtype(np.uint16): '16U',
    np.dtype(np.int16): '16S',
    np.dtype(np.int32): '32S',
    np.dtype(np.float32): '32F',
    np.dtype(np.float64): '64F',
}

_DTYPE_DEPTHS = {np.dtype(np.uint8): 8, np.dtype(np.uint16): 16}


def format_image_path(image_format, index):
    """Substitute a frame index into a printf-style path format."""
    if '%' not in image_format:
        return image_format
    try:
        return image_format % index
    except (TypeError, ValueError) as e:
        raise PreconditionError(f'Invalid image path format "{image_format}": {e}') from e


def image_type_name(image):
    """OpenCV style type string of an image, e.g. 8UC1 or 16UC3."""
    depth = _CV_DEPTH_NAMES.get(image.dtype, 'User')
    channels = 1 if image.ndim == 2 else image.shape[2]
    return f'{depth}C{channels}'


def image_depth(image):
    """Bits per pixel of a supported single-channel image, None otherwise."""
    if image.ndim != 2:
        return None
    return _DTYPE_DEPTHS.get(image.dtype)


def validate_stereo_pair(left_image, right_image):
    """Check that a pair can be fed to the matcher.

    Returns:
        Input depth in bits

    Raises:
        PreconditionError: with the expected and actual type and size
    """
    if left_image.shape != right_image.shape or left_image.dtype != right_image.dtype:
        raise PreconditionError(
            'input images must be same size and type. '
            f'left: {left_image.shape[1]}x{left_image.shape[0]} {image_type_name(left_image)}, '
            f'right: {right_image.shape[1]}x{right_image.shape[0]} '
            f'{image_type_name(right_image)}')

    depth = image_depth(left_image)
    if depth not in SUPPORTED_INPUT_DEPTHS:
        message = (
            'Input image format is not supported. '
            'Required format: 8UC1 (8-bit grayscale) or 16UC1 (16-bit grayscale). '
            f'Actual format: {image_type_name(left_image)}.')
        if left_image.ndim == 3:
            message += ' Hint: If you are using color images, please convert them to ' \
                       'grayscale first.'
        raise PreconditionError(message)
    return depth


def write_json_report(report_file, report):
    directory = os.path.dirname(report_file)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(report_file, 'w') as f:
        json.dump(report, f, indent=2)
    logger.info('Wrote report to %s', report_file)


class BaseStereoBenchmark(ABC):
    """Owns the accelerator, the matcher and the three device buffers of a run."""

    def __init__(self, config, accelerator=None, matcher=None):
        """Initialize the benchmark.

        Args:
            config: Validated BenchmarkConfig
            accelerator: Accelerator to use instead of creating config.device
            matcher: Stereo matcher to use instead of creating config.matcher
        """
        self.config = config
        self.verbose = config.verbose
        self.left_buffer = None
        self.right_buffer = None
        self.disparity_buffer = None
        self.matcher_config = None

        self.accelerator = accelerator or create_accelerator(
            config.device, device_id=config.device_id, verbose=config.verbose)
        try:
            self.matcher = matcher or create_stereo_matcher(
                config.matcher, self.accelerator, dict(config.matcher_params))
        except BenchmarkError:
            if accelerator is None:
                self.accelerator.close()
            raise

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.cleanup()

    def cleanup(self):
        """Release device buffers, then the matcher and accelerator."""
        for name in ('left_buffer', 'right_buffer', 'disparity_buffer'):
            buffer = getattr(self, name, None)
            if buffer is None:
                continue
            try:
                buffer.release()
            except BenchmarkError as e:
                logger.warning('Failed to release %s: %s', name, e)
            setattr(self, name, None)

        if getattr(self, 'matcher', None) is not None:
            self.matcher.close()
        if getattr(self, 'accelerator', None) is not None:
            self.accelerator.close()

    def load_pair(self, index):
        """Read the left/right images for a frame index.

        Returns:
            (left, right), or (None, None) if either image cannot be read
        """
        left_path = format_image_path(self.config.left_image_format, index)
        right_path = format_image_path(self.config.right_image_format, index)

        left_image = cv2.imread(left_path, cv2.IMREAD_UNCHANGED)
        if left_image is None:
            logger.debug('Could not read left image %s', left_path)
            return None, None

        right_image = cv2.imread(right_path, cv2.IMREAD_UNCHANGED)
        if right_image is None:
            logger.debug('Could not read right image %s', right_path)
            return None, None

        return left_image, right_image

    def validate_pair(self, left_image, right_image):
        """Validate a pair, and against the configured geometry once prepared.

        Returns:
            Input depth in bits
        """
        depth = validate_stereo_pair(left_image, right_image)
        if self.matcher_config is not None:
            expected = self.matcher_config
            height, width = left_image.shape
            if (width, height, depth) != (expected.width, expected.height, expected.input_depth):
                raise PreconditionError(
                    'input images must match the configured geometry. '
                    f'expected: {expected.width}x{expected.height} {expected.input_depth}-bit, '
                    f'actual: {width}x{height} {image_type_name(left_image)}')
        return depth

    def prepare(self, left_image, input_depth):
        """Configure the matcher and allocate the device buffers for a geometry."""
        height, width = left_image.shape
        matcher_config = MatcherConfig(
            width=width,
            height=height,
            disp_size=self.config.disp_size,
            input_depth=input_depth,
            output_depth=OUTPUT_DEPTH,
        )
        src_bytes = compute_buffer_size(width, height, input_depth)
        dst_bytes = compute_buffer_size(width, height, OUTPUT_DEPTH)

        self.matcher.configure(matcher_config)
        self.left_buffer = DeviceBuffer(self.accelerator, src_bytes)
        self.right_buffer = DeviceBuffer(self.accelerator, src_bytes)
        self.disparity_buffer = DeviceBuffer(self.accelerator, dst_bytes)
        self.matcher_config = matcher_config

        if self.verbose:
            logger.info('Device: %s, matcher: %s', self.accelerator.describe(), self.matcher.name)
            logger.info('Image size: %dx%d, input depth: %d bits, disparity size: %d',
                        width, height, input_depth, self.config.disp_size)

    def upload_pair(self, left_image, right_image):
        self.left_buffer.upload(left_image)
        self.right_buffer.upload(right_image)

    def execute(self):
        """Issue one matcher call on the device buffers."""
        self.matcher.execute(self.left_buffer.data, self.right_buffer.data,
                             self.disparity_buffer.data)

    def synchronize(self):
        self.accelerator.synchronize()

    def download_disparity(self):
        """Copy the disparity map to a new int16 host array."""
        disparity = np.empty(self.matcher_config.shape, dtype=np.int16)
        return self.disparity_buffer.download(disparity)

    @abstractmethod
    def run(self):
        """Run the benchmark and return its summary."""
        pass

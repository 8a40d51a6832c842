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

"""Rescaling and persistence of disparity maps."""

from dataclasses import dataclass
import logging
import os
from typing import Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_DISPARITY_SCALE = 100.0
UINT16_MAX = np.iinfo(np.uint16).max


@dataclass(frozen=True)
class WriteResult:
    """Outcome of persisting one disparity map."""

    path: str
    ok: bool
    error: Optional[str] = None


def rescale_disparity(disparity, invalid_disparity, scale=DEFAULT_DISPARITY_SCALE,
                      subpixel_scale=1):
    """Convert a signed disparity map to uint16 for storage.

    Args:
        disparity: int16 disparity map in units of 1 / subpixel_scale pixels
        invalid_disparity: Sentinel value marking pixels without a disparity
        scale: Factor applied to the disparity in pixels
        subpixel_scale: Fixed-point scale of the input values

    Returns:
        uint16 array holding round(disparity_px * scale) clamped to [0, 65535],
        with invalid pixels set to 0
    """
    scaled = np.rint(disparity.astype(np.float64) * (scale / subpixel_scale))
    output = np.clip(scaled, 0, UINT16_MAX).astype(np.uint16)
    output[disparity == invalid_disparity] = 0
    return output


def disparity_filename(frame_no):
    return f'disparity_{frame_no:04d}.png'


def ensure_directory_exists_for_file(file_path):
    """Ensure directory exists for the given file path."""
    directory = os.path.dirname(file_path)
    if directory:
        os.makedirs(directory, exist_ok=True)


def write_disparity(path, disparity_u16):
    """Write a uint16 disparity map as a single-channel 16-bit PNG.

    Failures are returned instead of raised so callers can carry on with the
    next frame.
    """
    try:
        ensure_directory_exists_for_file(path)
        if not cv2.imwrite(path, disparity_u16):
            return WriteResult(path=path, ok=False, error='cv2.imwrite returned False')
    except (cv2.error, OSError) as e:
        return WriteResult(path=path, ok=False, error=str(e))
    return WriteResult(path=path, ok=True)

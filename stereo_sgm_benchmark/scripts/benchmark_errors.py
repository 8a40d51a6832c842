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

"""Error classification shared by the benchmark scripts."""

import enum


class ErrorClass(enum.Enum):
    """How a failure affects the run."""

    # Abort the run with a non-zero exit status.
    FATAL = 'fatal'
    # No more frames to read; the loop ends without error.
    END_OF_STREAM = 'end_of_stream'
    # Logged with frame context, the loop continues.
    RECOVERABLE = 'recoverable'


class BenchmarkError(RuntimeError):
    """Base class for errors that abort a benchmark run."""

    error_class = ErrorClass.FATAL


class PreconditionError(BenchmarkError):
    """Invalid arguments, images or configuration."""


class DeviceError(BenchmarkError):
    """Accelerator unavailable, allocation or transfer failure."""

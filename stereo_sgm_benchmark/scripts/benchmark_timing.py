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

"""Device-synchronized timing of compute calls."""

from dataclasses import dataclass, asdict
import time
from typing import Callable, Dict, List, Optional

import numpy as np

from benchmark_errors import PreconditionError

MILLISECONDS_PER_SECOND = 1000.0
MICROSECONDS_PER_SECOND = 1000000.0


@dataclass(frozen=True)
class TimingSample:
    """Elapsed time of one compute call, taken after the completion barrier."""

    iteration: int
    elapsed_ms: float
    warmup: bool = False


@dataclass(frozen=True)
class TimingSummary:
    """Statistics over the measurement iterations of a run."""

    count: int
    total_ms: float
    mean_ms: float
    min_ms: float
    median_ms: float
    max_ms: float
    stdev_ms: float

    @classmethod
    def from_samples(cls, samples: List[TimingSample]) -> 'TimingSummary':
        """Summarize the non-warmup samples."""
        durations = np.array([s.elapsed_ms for s in samples if not s.warmup], dtype=np.float64)
        if durations.size == 0:
            raise PreconditionError('No measurement iterations to summarize')
        total = float(durations.sum())
        return cls(
            count=int(durations.size),
            total_ms=total,
            mean_ms=total / durations.size,
            min_ms=float(durations.min()),
            median_ms=float(np.median(durations)),
            max_ms=float(durations.max()),
            stdev_ms=float(durations.std()),
        )

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def time_synchronized(execute: Callable[[], None],
                      synchronize: Callable[[], None],
                      clock: Callable[[], float] = time.perf_counter) -> float:
    """Run `execute`, wait for the device and return the elapsed time in ms.

    The clock is stopped only after `synchronize` returns; asynchronous device
    work would otherwise be timed as almost free.
    """
    start = clock()
    execute()
    synchronize()
    end = clock()
    return (end - start) * MILLISECONDS_PER_SECOND


def run_timed_iterations(execute: Callable[[], None],
                         synchronize: Callable[[], None],
                         warmup_runs: int,
                         measurement_runs: int,
                         clock: Callable[[], float] = time.perf_counter) -> List[TimingSample]:
    """Run warm-up iterations followed by measurement iterations.

    Returns:
        One sample per iteration; warm-up samples are flagged and must not be
        included in reported statistics.
    """
    if warmup_runs < 0:
        raise PreconditionError(f'warmup_runs must be non-negative, got {warmup_runs}')
    if measurement_runs <= 0:
        raise PreconditionError(f'measurement_runs must be positive, got {measurement_runs}')

    samples = []
    for i in range(warmup_runs + measurement_runs):
        elapsed_ms = time_synchronized(execute, synchronize, clock)
        samples.append(TimingSample(iteration=i, elapsed_ms=elapsed_ms, warmup=i < warmup_runs))
    return samples


def frames_per_second(elapsed_ms: float) -> Optional[float]:
    """Throughput of a single frame, 1e6 / elapsed microseconds.

    None when the clock did not advance, since no rate can be derived.
    """
    elapsed_us = elapsed_ms * MILLISECONDS_PER_SECOND
    if elapsed_us <= 0:
        return None
    return MICROSECONDS_PER_SECOND / elapsed_us

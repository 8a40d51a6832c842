#!/usr/bin/env python3

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

"""Run SGM over a numbered sequence of stereo pairs and save the disparity maps."""

from argparse import ArgumentParser
from dataclasses import dataclass
import enum
import logging
import os
import sys
import time
from typing import List, Optional

import numpy as np

from benchmark_config import add_common_arguments, config_from_args
from benchmark_errors import BenchmarkError, ErrorClass, PreconditionError
from benchmark_timing import frames_per_second, time_synchronized
from disparity_io import disparity_filename, rescale_disparity, write_disparity
from stereo_benchmark_base import LOG_FORMAT, BaseStereoBenchmark, write_json_report

logger = logging.getLogger(__name__)


class FrameStatus(enum.Enum):
    WRITTEN = 'written'
    WRITE_FAILED = 'write_failed'
    # Failed validation under the 'skip' policy.
    SKIPPED = 'skipped'


@dataclass(frozen=True)
class FrameRecord:
    """Outcome of one processed frame index."""

    frame_no: int
    status: FrameStatus
    elapsed_ms: Optional[float] = None
    fps: Optional[float] = None
    path: Optional[str] = None
    error: Optional[str] = None

    @property
    def written(self):
        return self.status == FrameStatus.WRITTEN

    @property
    def error_class(self):
        return None if self.written else ErrorClass.RECOVERABLE

    def to_dict(self):
        return {
            'frame_no': self.frame_no,
            'status': self.status.value,
            'elapsed_ms': self.elapsed_ms,
            'fps': self.fps,
            'path': self.path,
            'error': self.error,
        }


@dataclass(frozen=True)
class StreamSummary:
    """Totals of a movie run."""

    records: List[FrameRecord]
    # First index that could not be read, None if the frame count ran out first.
    end_of_stream: Optional[int] = None

    @property
    def frames_written(self):
        return sum(1 for r in self.records if r.written)

    @property
    def write_failures(self):
        return sum(1 for r in self.records if r.status == FrameStatus.WRITE_FAILED)

    @property
    def frames_skipped(self):
        return sum(1 for r in self.records if r.status == FrameStatus.SKIPPED)

    @property
    def stop_reason(self):
        return ErrorClass.END_OF_STREAM if self.end_of_stream is not None else None

    @property
    def mean_fps(self):
        fps = [r.fps for r in self.records if r.fps is not None]
        return float(np.mean(fps)) if fps else 0.0

    def to_dict(self):
        return {
            'mode': 'movie',
            'frames_written': self.frames_written,
            'write_failures': self.write_failures,
            'frames_skipped': self.frames_skipped,
            'mean_fps': self.mean_fps,
            'end_of_stream': self.end_of_stream,
            'stop_reason': self.stop_reason.value if self.stop_reason else None,
            'frames': [r.to_dict() for r in self.records],
        }


class SGMMovieBenchmark(BaseStereoBenchmark):
    """Reads, matches and writes frames start_number .. start_number + total_number - 1."""

    def __init__(self, config, accelerator=None, matcher=None, clock=time.perf_counter):
        self.clock = clock
        super().__init__(config, accelerator, matcher)

    def run(self):
        """Process the frame range.

        Returns:
            StreamSummary of the run

        Raises:
            PreconditionError: when a frame fails validation and the policy is 'abort'
        """
        records = []
        end_of_stream = None
        start = self.config.start_number

        for frame_no in range(start, start + self.config.total_number):
            left_image, right_image = self.load_pair(frame_no)
            if left_image is None or right_image is None:
                print(f'Finished processing all images or could not read image for frame '
                      f'{frame_no}.')
                end_of_stream = frame_no
                break

            try:
                input_depth = self.validate_pair(left_image, right_image)
            except PreconditionError as e:
                if self.config.on_invalid_frame == 'abort':
                    raise PreconditionError(f'Frame {frame_no}: {e}') from e
                logger.warning('Skipping frame %d: %s', frame_no, e)
                records.append(FrameRecord(frame_no=frame_no, status=FrameStatus.SKIPPED,
                                           error=str(e)))
                continue

            if self.matcher_config is None:
                # Buffers are sized by the first valid frame and reused afterwards.
                self.prepare(left_image, input_depth)

            records.append(self.process_frame(frame_no, left_image, right_image))

        summary = StreamSummary(records=records, end_of_stream=end_of_stream)
        self.print_summary(summary)
        if self.config.report_file:
            write_json_report(self.config.report_file, summary.to_dict())
        return summary

    def process_frame(self, frame_no, left_image, right_image):
        """Match one validated pair and persist the rescaled disparity."""
        self.upload_pair(left_image, right_image)

        elapsed_ms = time_synchronized(self.execute, self.synchronize, self.clock)
        fps = frames_per_second(elapsed_ms)

        disparity = self.download_disparity()
        output_disparity = rescale_disparity(
            disparity,
            self.matcher.invalid_disparity(),
            scale=self.config.disparity_scale,
            subpixel_scale=self.matcher.subpixel_scale,
        )

        full_path = os.path.join(self.config.output_path, disparity_filename(frame_no))
        result = write_disparity(full_path, output_disparity)
        if not result.ok:
            logger.error('Error saving frame %d to %s. %s', frame_no, full_path, result.error)
            return FrameRecord(frame_no=frame_no, status=FrameStatus.WRITE_FAILED,
                               elapsed_ms=elapsed_ms, fps=fps, path=full_path,
                               error=result.error)

        rate = f'{fps:.2f} FPS' if fps is not None else 'FPS n/a'
        print(f'Frame {frame_no:4d}: Saved to {full_path} ({rate})')
        return FrameRecord(frame_no=frame_no, status=FrameStatus.WRITTEN, elapsed_ms=elapsed_ms,
                           fps=fps, path=full_path)

    def print_summary(self, summary):
        print(f'Frames written: {summary.frames_written}, '
              f'write failures: {summary.write_failures}, '
              f'skipped: {summary.frames_skipped}, '
              f'average {summary.mean_fps:.2f} FPS')


def parse_args(argv=None):
    parser = ArgumentParser(prog='run_sgm_movie.py',
                            description='Compute and save disparity maps for a numbered '
                                        'sequence of stereo pairs.')
    add_common_arguments(parser)
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)
    try:
        config = config_from_args(args)
        with SGMMovieBenchmark(config) as benchmark:
            benchmark.run()
    except BenchmarkError as e:
        logger.error('%s', e)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())

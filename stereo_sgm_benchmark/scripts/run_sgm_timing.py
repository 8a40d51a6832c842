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

"""Measure the average SGM execution time on a single stereo pair."""

from argparse import ArgumentParser
import logging
import sys
import time

from benchmark_config import add_common_arguments, config_from_args
from benchmark_errors import BenchmarkError, PreconditionError
from benchmark_timing import TimingSummary, run_timed_iterations
from stereo_benchmark_base import LOG_FORMAT, BaseStereoBenchmark, write_json_report

logger = logging.getLogger(__name__)

SEPARATOR = '-' * 50


class SGMTimingBenchmark(BaseStereoBenchmark):
    """Times repeated matcher calls on one uploaded stereo pair."""

    def __init__(self, config, accelerator=None, matcher=None, clock=time.perf_counter):
        self.clock = clock
        self.samples = []
        super().__init__(config, accelerator, matcher)

    def run(self):
        """Load, validate and upload the pair, then time the matcher.

        Returns:
            TimingSummary over the measurement iterations
        """
        # Only the pair selected by start_number is used.
        left_image, right_image = self.load_pair(self.config.start_number)
        if left_image is None or right_image is None:
            raise PreconditionError('imread failed. Check start_number and image paths.')
        input_depth = self.validate_pair(left_image, right_image)

        self.prepare(left_image, input_depth)
        # Transfers stay outside the timed loop.
        self.upload_pair(left_image, right_image)

        print('Starting performance measurement...')
        print(f'Warm-up runs: {self.config.warmup_runs}')
        print(f'Measurement runs: {self.config.measurement_runs}')

        self.samples = run_timed_iterations(
            self.execute,
            self.synchronize,
            warmup_runs=self.config.warmup_runs,
            measurement_runs=self.config.measurement_runs,
            clock=self.clock,
        )
        summary = TimingSummary.from_samples(self.samples)
        self.print_results(summary)

        if self.config.report_file:
            write_json_report(self.config.report_file, self.build_report(summary))
        return summary

    def print_results(self, summary):
        print()
        print(SEPARATOR)
        print('Performance Results:')
        print(f'Average execution time over {summary.count} runs: {summary.mean_ms:.2f} ms.')
        if self.verbose:
            print(f'Min / median / max: {summary.min_ms:.2f} / {summary.median_ms:.2f} / '
                  f'{summary.max_ms:.2f} ms, stdev {summary.stdev_ms:.2f} ms')
        print(SEPARATOR)

    def build_report(self, summary):
        return {
            'mode': 'timing',
            'device': self.accelerator.describe(),
            'matcher': self.matcher.name,
            'width': self.matcher_config.width,
            'height': self.matcher_config.height,
            'input_depth': self.matcher_config.input_depth,
            'disp_size': self.matcher_config.disp_size,
            'warmup_runs': self.config.warmup_runs,
            'summary': summary.to_dict(),
            'measurements_ms': [s.elapsed_ms for s in self.samples if not s.warmup],
        }


def parse_args(argv=None):
    parser = ArgumentParser(prog='run_sgm_timing.py',
                            description='Average SGM execution time on one stereo pair. '
                                        'start_number selects the pair; output_path and '
                                        'total_number are unused.')
    add_common_arguments(parser)
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)
    try:
        config = config_from_args(args)
        with SGMTimingBenchmark(config) as benchmark:
            benchmark.run()
    except BenchmarkError as e:
        logger.error('%s', e)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())

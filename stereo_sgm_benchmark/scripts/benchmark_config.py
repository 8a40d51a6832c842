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

"""Configuration shared by the SGM timing and movie scripts."""

from argparse import ArgumentParser, Namespace
from dataclasses import dataclass, field
import logging
import pathlib
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

import yaml

from accelerator import SUPPORTED_DEVICES
from benchmark_errors import PreconditionError
from stereo_matcher import DEFAULT_MATCHER_PARAMS, STEREO_MATCHERS, SUPPORTED_DISPARITY_SIZES

logger = logging.getLogger(__name__)

INVALID_FRAME_POLICIES = ('abort', 'skip')


def get_default_benchmark_config() -> Dict[str, Any]:
    """Get default configuration for the timing loop and device selection."""
    return {
        'warmup_runs': 20,
        'measurement_runs': 50,
        'device': 'cuda',
        'device_id': 0,
    }


def get_default_matcher_config() -> Dict[str, Any]:
    """Get default configuration for the stereo matcher backend."""
    config = {'backend': 'opencv_cuda_sgm'}
    config.update(DEFAULT_MATCHER_PARAMS)
    return config


def get_default_stream_config() -> Dict[str, Any]:
    """Get default configuration for the movie mode frame loop."""
    return {
        # 'abort' stops the whole run on a bad frame, 'skip' moves on.
        'on_invalid_frame': 'abort',
        'disparity_scale': 100.0,
    }


def load_benchmark_config(
    config_path: Optional[pathlib.Path] = None,
    cli_overrides: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Load benchmark configuration from YAML file with optional CLI overrides.

    Args:
        config_path: Path to YAML configuration file. If None, returns default config.
        cli_overrides: Dictionary of CLI overrides to apply on top of YAML config.
                      Format: {'benchmark': {'warmup_runs': 5}, 'matcher': {...}}

    Returns:
        Dictionary containing configuration with 'benchmark', 'matcher' and
        'stream' sections.
    """
    config = {
        'benchmark': get_default_benchmark_config(),
        'matcher': get_default_matcher_config(),
        'stream': get_default_stream_config(),
    }

    if config_path and config_path.exists():
        try:
            with open(config_path, 'r') as f:
                yaml_data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning('Failed to load benchmark config from %s: %s', config_path, e)
            logger.warning('Using default benchmark configuration')
            yaml_data = None
        else:
            if yaml_data:
                logger.info('Loaded benchmark config from %s', config_path)
            else:
                logger.warning('Empty config file %s, using defaults', config_path)
        if isinstance(yaml_data, dict):
            _merge_sections(config, yaml_data, source=str(config_path))
        elif yaml_data:
            logger.warning('Ignoring config file %s: top level must be a mapping', config_path)
    elif config_path:
        logger.warning('Config file %s does not exist, using defaults', config_path)

    if cli_overrides:
        logger.info('Applied configuration overrides:')
        _merge_sections(config, cli_overrides, source='command line')
        for section, params in cli_overrides.items():
            if section in config and params:
                for param, value in params.items():
                    logger.info('  %s.%s = %s', section, param, value)

    return config


def _merge_sections(config: Dict[str, Any], updates: Dict[str, Any], source: str) -> None:
    for section, params in updates.items():
        if section not in config:
            logger.warning('Ignoring unknown config section "%s" from %s', section, source)
            continue
        if not isinstance(params, dict):
            logger.warning('Ignoring config section "%s" from %s: expected a mapping',
                           section, source)
            continue
        config[section].update(params)


def parse_config_overrides(override_list: List[str]) -> Dict[str, Dict[str, Any]]:
    """Parse CLI config override strings into nested dict.

    Args:
        override_list: List of override strings in format 'section.param=value'
                      e.g., ['benchmark.warmup_runs=5', 'matcher.P2=150']

    Returns:
        Nested dictionary with overrides organized by section.
        e.g., {'benchmark': {'warmup_runs': 5}, 'matcher': {'P2': 150}}
    """
    overrides = {}

    for override_str in override_list:
        if '=' not in override_str:
            logger.warning('Skipping invalid override "%s" (missing =)', override_str)
            continue

        key_path, value_str = override_str.split('=', 1)
        parts = key_path.split('.')

        if len(parts) != 2:
            logger.warning('Skipping invalid override "%s" '
                           '(expected format: section.param=value)', override_str)
            continue

        section, param = parts
        overrides.setdefault(section, {})[param] = _parse_value(value_str)

    return overrides


def _parse_value(value_str: str) -> Any:
    """Parse string value to appropriate type."""
    if value_str.lower() in ('true', 'false'):
        return value_str.lower() == 'true'

    try:
        return int(value_str)
    except ValueError:
        pass

    try:
        return float(value_str)
    except ValueError:
        pass

    return value_str


@dataclass(frozen=True)
class BenchmarkConfig:
    """Immutable run configuration, built once at startup."""

    left_image_format: str
    right_image_format: str
    output_path: str = '.'
    disp_size: int = 128
    start_number: int = 0
    total_number: int = 0
    warmup_runs: int = 20
    measurement_runs: int = 50
    device: str = 'cuda'
    device_id: int = 0
    matcher: str = 'opencv_cuda_sgm'
    matcher_params: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_MATCHER_PARAMS)))
    on_invalid_frame: str = 'abort'
    disparity_scale: float = 100.0
    report_file: Optional[str] = None
    verbose: bool = False

    def validate(self):
        """Raise PreconditionError for values the benchmark cannot run with."""
        if self.disp_size not in SUPPORTED_DISPARITY_SIZES:
            raise PreconditionError('disparity size must be 64, 128 or 256.')
        if self.start_number < 0:
            raise PreconditionError(f'start_number must be non-negative, got {self.start_number}')
        if self.total_number < 0:
            raise PreconditionError(f'total_number must be non-negative, got {self.total_number}')
        if self.warmup_runs < 0:
            raise PreconditionError(f'warmup_runs must be non-negative, got {self.warmup_runs}')
        if self.measurement_runs <= 0:
            raise PreconditionError(
                f'measurement_runs must be positive, got {self.measurement_runs}')
        if self.device not in SUPPORTED_DEVICES:
            raise PreconditionError(
                f'Unsupported device "{self.device}", expected one of {SUPPORTED_DEVICES}')
        if self.matcher not in STEREO_MATCHERS:
            raise PreconditionError(
                f'Unsupported matcher "{self.matcher}", expected one of '
                f'{sorted(STEREO_MATCHERS)}')
        if self.on_invalid_frame not in INVALID_FRAME_POLICIES:
            raise PreconditionError(
                f'on_invalid_frame must be one of {INVALID_FRAME_POLICIES}, '
                f'got "{self.on_invalid_frame}"')
        if self.disparity_scale <= 0:
            raise PreconditionError(
                f'disparity_scale must be positive, got {self.disparity_scale}')
        return self


def add_common_arguments(parser: ArgumentParser) -> ArgumentParser:
    """Add the arguments shared by the timing and movie scripts."""
    parser.add_argument('left_image_format',
                        help='format string for path to input left image, e.g. left_%%06d.png')
    parser.add_argument('right_image_format',
                        help='format string for path to input right image')
    parser.add_argument('--output_path', type=str, default='.',
                        help='path to output directory for disparity maps')
    parser.add_argument('--disp_size', type=int, default=128,
                        help='maximum possible disparity value (64, 128 or 256)')
    parser.add_argument('--start_number', type=int, default=0,
                        help='index to start reading')
    parser.add_argument('--total_number', type=int, default=0,
                        help='number of image pairs to process')
    parser.add_argument('--device', type=str, default=None, choices=SUPPORTED_DEVICES,
                        help='accelerator holding the image and disparity buffers')
    parser.add_argument('--matcher', type=str, default=None, choices=sorted(STEREO_MATCHERS),
                        help='stereo matcher backend')
    parser.add_argument('--warmup_runs', type=int, default=None,
                        help='number of discarded warm-up iterations')
    parser.add_argument('--measurement_runs', type=int, default=None,
                        help='number of measured iterations')
    parser.add_argument('--on_invalid_frame', type=str, default=None,
                        choices=INVALID_FRAME_POLICIES,
                        help='what to do when a frame fails validation in movie mode')
    parser.add_argument('--config', type=pathlib.Path, default=None,
                        help='YAML file with benchmark, matcher and stream sections')
    parser.add_argument('--set', dest='overrides', action='append', default=[],
                        metavar='SECTION.PARAM=VALUE',
                        help='override a config value, may be repeated')
    parser.add_argument('--report_file', type=str, default=None,
                        help='write a JSON report of the run to this file')
    parser.add_argument('--verbose', help='Enable verbose logging', action='store_true')
    return parser


def config_from_args(args: Namespace) -> BenchmarkConfig:
    """Build the validated run configuration from parsed arguments.

    Precedence, lowest first: defaults, --config file, --set overrides,
    dedicated command line options.
    """
    config = load_benchmark_config(args.config, parse_config_overrides(args.overrides))
    benchmark = config['benchmark']
    matcher = dict(config['matcher'])
    stream = config['stream']

    backend = matcher.pop('backend')
    try:
        run_config = BenchmarkConfig(
            left_image_format=args.left_image_format,
            right_image_format=args.right_image_format,
            output_path=args.output_path,
            disp_size=args.disp_size,
            start_number=args.start_number,
            total_number=args.total_number,
            warmup_runs=int(_first_set(args.warmup_runs, benchmark['warmup_runs'])),
            measurement_runs=int(_first_set(args.measurement_runs,
                                            benchmark['measurement_runs'])),
            device=_first_set(args.device, benchmark['device']),
            device_id=int(benchmark['device_id']),
            matcher=_first_set(args.matcher, backend),
            matcher_params=MappingProxyType(matcher),
            on_invalid_frame=_first_set(args.on_invalid_frame, stream['on_invalid_frame']),
            disparity_scale=float(stream['disparity_scale']),
            report_file=args.report_file,
            verbose=args.verbose,
        )
    except (TypeError, ValueError) as e:
        raise PreconditionError(f'Invalid configuration value: {e}') from e
    return run_config.validate()


def _first_set(cli_value, config_value):
    return config_value if cli_value is None else cli_value

from argparse import ArgumentParser

import pytest

from benchmark_config import (BenchmarkConfig, add_common_arguments, config_from_args,
                              load_benchmark_config, parse_config_overrides)
from benchmark_errors import PreconditionError


def parse(argv):
    parser = add_common_arguments(ArgumentParser())
    return parser.parse_args(['left_%04d.png', 'right_%04d.png'] + argv)


def test_defaults():
    config = load_benchmark_config()

    assert config['benchmark']['warmup_runs'] == 20
    assert config['benchmark']['measurement_runs'] == 50
    assert config['matcher']['backend'] == 'opencv_cuda_sgm'
    assert config['matcher']['P1'] == 10
    assert config['matcher']['P2'] == 120
    assert config['stream']['on_invalid_frame'] == 'abort'
    assert config['stream']['disparity_scale'] == 100.0


def test_yaml_and_overrides(tmp_path):
    config_file = tmp_path / 'bench.yaml'
    config_file.write_text(
        'benchmark:\n'
        '  warmup_runs: 5\n'
        'matcher:\n'
        '  P2: 150\n'
        'stream:\n'
        '  on_invalid_frame: skip\n'
        'unknown:\n'
        '  value: 1\n')

    config = load_benchmark_config(config_file, {'benchmark': {'warmup_runs': 7}})

    assert config['benchmark']['warmup_runs'] == 7
    assert config['benchmark']['measurement_runs'] == 50
    assert config['matcher']['P2'] == 150
    assert config['stream']['on_invalid_frame'] == 'skip'
    assert 'unknown' not in config


def test_malformed_yaml_falls_back_to_defaults(tmp_path):
    config_file = tmp_path / 'bench.yaml'
    config_file.write_text('benchmark: [unclosed\n')

    config = load_benchmark_config(config_file)

    assert config['benchmark']['warmup_runs'] == 20


def test_missing_config_file_uses_defaults(tmp_path):
    config = load_benchmark_config(tmp_path / 'missing.yaml')
    assert config['benchmark']['measurement_runs'] == 50


def test_parse_config_overrides():
    overrides = parse_config_overrides([
        'benchmark.warmup_runs=3',
        'stream.disparity_scale=64.5',
        'benchmark.device=host',
        'matcher.enabled=true',
        'missing_equals',
        'too.many.parts=1',
    ])

    assert overrides == {
        'benchmark': {'warmup_runs': 3, 'device': 'host'},
        'stream': {'disparity_scale': 64.5},
        'matcher': {'enabled': True},
    }


def test_config_from_args_precedence(tmp_path):
    config_file = tmp_path / 'bench.yaml'
    config_file.write_text('benchmark:\n  warmup_runs: 5\n  measurement_runs: 9\n')

    args = parse(['--config', str(config_file),
                  '--set', 'benchmark.measurement_runs=11',
                  '--set', 'benchmark.device=host',
                  '--set', 'matcher.backend=opencv_sgbm',
                  '--warmup_runs', '1',
                  '--disp_size', '256'])
    config = config_from_args(args)

    assert config.warmup_runs == 1
    assert config.measurement_runs == 11
    assert config.device == 'host'
    assert config.matcher == 'opencv_sgbm'
    assert config.disp_size == 256
    assert 'backend' not in config.matcher_params
    assert config.matcher_params['P1'] == 10


def test_cli_defaults():
    args = parse([])
    assert args.output_path == '.'
    assert args.disp_size == 128
    assert args.start_number == 0
    assert args.total_number == 0


def test_config_is_immutable():
    config = BenchmarkConfig('l_%d.png', 'r_%d.png')
    with pytest.raises(AttributeError):
        config.disp_size = 64
    with pytest.raises(TypeError):
        config.matcher_params['P1'] = 1


@pytest.mark.parametrize('kwargs, message', [
    ({'disp_size': 32}, 'disparity size must be 64, 128 or 256'),
    ({'disp_size': 512}, 'disparity size must be 64, 128 or 256'),
    ({'measurement_runs': 0}, 'measurement_runs'),
    ({'warmup_runs': -1}, 'warmup_runs'),
    ({'start_number': -1}, 'start_number'),
    ({'total_number': -3}, 'total_number'),
    ({'device': 'tpu'}, 'Unsupported device'),
    ({'matcher': 'libsgm'}, 'Unsupported matcher'),
    ({'on_invalid_frame': 'retry'}, 'on_invalid_frame'),
    ({'disparity_scale': 0}, 'disparity_scale'),
])
def test_validation(kwargs, message):
    with pytest.raises(PreconditionError, match=message):
        BenchmarkConfig('l_%d.png', 'r_%d.png', **kwargs).validate()


@pytest.mark.parametrize('disp_size', [64, 128, 256])
def test_supported_disparity_sizes(disp_size):
    assert BenchmarkConfig('l.png', 'r.png', disp_size=disp_size).validate().disp_size == disp_size


def test_bad_override_type_is_a_precondition_error():
    args = parse(['--set', 'benchmark.warmup_runs=many'])
    with pytest.raises(PreconditionError, match='Invalid configuration value'):
        config_from_args(args)

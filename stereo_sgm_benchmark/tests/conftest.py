import cv2
import numpy as np
import pytest

from accelerator import HostAccelerator
from benchmark_config import BenchmarkConfig
from stereo_matcher import BaseStereoMatcher


class CountingHostAccelerator(HostAccelerator):
    """Host accelerator that records transfers and barriers."""

    def __init__(self, events=None):
        super().__init__()
        self.events = events if events is not None else []
        self.uploads = 0
        self.downloads = 0
        self.syncs = 0

    def copy_to_device(self, handle, host_array):
        self.uploads += 1
        super().copy_to_device(handle, host_array)

    def copy_to_host(self, host_array, handle):
        self.downloads += 1
        super().copy_to_host(host_array, handle)

    def synchronize(self):
        self.syncs += 1
        self.events.append('sync')


class FakeStereoMatcher(BaseStereoMatcher):
    """Writes left - right as the disparity, and the sentinel where left is 0."""

    name = 'fake'
    INVALID = -1

    def __init__(self, accelerator, events=None):
        super().__init__(accelerator)
        self.events = events if events is not None else []
        self.executions = 0

    def invalid_disparity(self):
        return self.INVALID

    def _configure(self, config):
        self._left = np.empty(config.shape, dtype=config.input_dtype)
        self._right = np.empty(config.shape, dtype=config.input_dtype)

    def _execute(self, left, right, disparity):
        self.executions += 1
        self.events.append('execute')
        # Bypass the accelerator counters, these are not host transfers.
        self._left.reshape(-1).view(np.uint8)[:] = self.accelerator.block(left)
        self._right.reshape(-1).view(np.uint8)[:] = self.accelerator.block(right)
        result = self._left.astype(np.int16) - self._right.astype(np.int16)
        result[self._left == 0] = self.INVALID
        self.accelerator.block(disparity)[:] = result.reshape(-1).view(np.uint8)


class SteppingClock:
    """Clock whose start/stop pairs are `durations` seconds apart."""

    def __init__(self, durations, events=None):
        self._durations = list(durations)
        self._now = 0.0
        self._running = False
        self.events = events if events is not None else []

    def __call__(self):
        self.events.append('clock')
        if self._running:
            self._now += self._durations.pop(0)
        self._running = not self._running
        return self._now


@pytest.fixture
def events():
    return []


@pytest.fixture
def host_accelerator(events):
    accelerator = CountingHostAccelerator(events)
    yield accelerator
    accelerator.close()


@pytest.fixture
def fake_matcher(host_accelerator, events):
    return FakeStereoMatcher(host_accelerator, events)


@pytest.fixture
def stepping_clock():
    return SteppingClock


@pytest.fixture
def image_dir(tmp_path):
    path = tmp_path / 'images'
    path.mkdir()
    return path


@pytest.fixture
def write_pair(image_dir):
    """Write left_%04d.png / right_%04d.png for a frame index."""

    def _write(index, left, right=None):
        if right is None:
            right = np.zeros_like(left)
        assert cv2.imwrite(str(image_dir / f'left_{index:04d}.png'), left)
        assert cv2.imwrite(str(image_dir / f'right_{index:04d}.png'), right)

    return _write


@pytest.fixture
def make_config(image_dir, tmp_path):
    def _make(**kwargs):
        values = {
            'left_image_format': str(image_dir / 'left_%04d.png'),
            'right_image_format': str(image_dir / 'right_%04d.png'),
            'output_path': str(tmp_path / 'out'),
            'device': 'host',
            'matcher': 'opencv_sgbm',
            'warmup_runs': 2,
            'measurement_runs': 3,
        }
        values.update(kwargs)
        return BenchmarkConfig(**values).validate()

    return _make


@pytest.fixture
def textured_pair():
    """Random texture and the same texture seen 8 pixels further left."""

    def _make(height=64, width=160, shift=8, dtype=np.uint8):
        rng = np.random.default_rng(1234)
        left = rng.integers(0, 256, size=(height, width)).astype(np.uint8)
        left = cv2.GaussianBlur(left, (3, 3), 0)
        right = np.roll(left, -shift, axis=1)
        if dtype == np.uint16:
            return left.astype(np.uint16) * 256, right.astype(np.uint16) * 256
        return left, right

    return _make

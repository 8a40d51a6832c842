import cv2
import numpy as np
import pytest

from accelerator import HostAccelerator
from benchmark_errors import PreconditionError
from device_buffer import DeviceBuffer
from stereo_matcher import (MatcherConfig, OpenCVCudaStereoSGM, OpenCVStereoSGBM,
                            create_stereo_matcher)


def run_matcher(matcher, accelerator, left, right, disp_size=64):
    height, width = left.shape
    depth = 8 if left.dtype == np.uint8 else 16
    matcher.configure(MatcherConfig(width=width, height=height, disp_size=disp_size,
                                    input_depth=depth))
    with DeviceBuffer(accelerator, left.nbytes) as d_left, \
            DeviceBuffer(accelerator, right.nbytes) as d_right, \
            DeviceBuffer(accelerator, width * height * 2) as d_disparity:
        d_left.upload(left)
        d_right.upload(right)
        matcher.execute(d_left.data, d_right.data, d_disparity.data)
        accelerator.synchronize()
        return d_disparity.download(np.empty((height, width), dtype=np.int16))


@pytest.mark.parametrize('kwargs, message', [
    ({'disp_size': 100}, 'disparity size must be 64, 128 or 256'),
    ({'input_depth': 12}, 'input depth'),
    ({'output_depth': 8}, 'output depth'),
    ({'width': 0}, 'positive'),
    ({'residency': 'host'}, 'residency'),
])
def test_matcher_config_validation(kwargs, message):
    values = {'width': 64, 'height': 32, 'disp_size': 128, 'input_depth': 8}
    values.update(kwargs)
    with pytest.raises(PreconditionError, match=message):
        MatcherConfig(**values).validate()


def test_create_stereo_matcher_unknown_backend():
    with pytest.raises(PreconditionError, match='Unsupported matcher'):
        create_stereo_matcher('libsgm', HostAccelerator())


def test_unknown_matcher_parameter_rejected():
    with pytest.raises(PreconditionError, match='Unknown matcher parameters'):
        OpenCVStereoSGBM(HostAccelerator(), {'p3': 1})


@pytest.mark.parametrize('value', ['abc', 10.5, True])
def test_non_integer_matcher_parameter_rejected(value):
    with pytest.raises(PreconditionError, match='"P1" must be an integer'):
        OpenCVStereoSGBM(HostAccelerator(), {'P1': value})


def test_opencv_rejection_is_a_precondition_error(monkeypatch):
    def reject(**kwargs):
        raise cv2.error('blockSize must be odd')

    monkeypatch.setattr(cv2, 'StereoSGBM_create', reject)
    matcher = OpenCVStereoSGBM(HostAccelerator(), {'block_size': 4})
    with pytest.raises(PreconditionError, match='rejected its parameters'):
        matcher.configure(MatcherConfig(width=64, height=32, disp_size=64, input_depth=8))
    assert matcher.config is None


def test_execute_before_configure():
    matcher = OpenCVStereoSGBM(HostAccelerator())
    with pytest.raises(PreconditionError, match='before configure'):
        matcher.execute(1, 2, 3)


def test_cuda_matcher_requires_cuda_device():
    with pytest.raises(PreconditionError, match='requires the cuda device'):
        OpenCVCudaStereoSGM(HostAccelerator())


def test_invalid_disparity_follows_min_disparity():
    accelerator = HostAccelerator()
    assert OpenCVStereoSGBM(accelerator).invalid_disparity() == -16
    assert OpenCVStereoSGBM(accelerator, {'min_disparity': 2}).invalid_disparity() == 16


@pytest.mark.parametrize('dtype', [np.uint8, np.uint16])
def test_sgbm_recovers_constant_shift(textured_pair, dtype):
    accelerator = HostAccelerator()
    matcher = OpenCVStereoSGBM(accelerator)
    left, right = textured_pair(shift=8, dtype=dtype)

    disparity = run_matcher(matcher, accelerator, left, right)

    # Columns left of disp_size have no full search range.
    region = disparity[8:-8, 72:-16]
    valid = region[region != matcher.invalid_disparity()]
    assert valid.size > region.size // 2
    assert np.median(valid) / matcher.subpixel_scale == pytest.approx(8, abs=1)


def test_sgbm_leaves_inputs_untouched(textured_pair):
    accelerator = HostAccelerator()
    left, right = textured_pair()
    expected_left = left.copy()

    run_matcher(OpenCVStereoSGBM(accelerator), accelerator, left, right)

    np.testing.assert_array_equal(left, expected_left)


@pytest.mark.skipif(cv2.cuda.getCudaEnabledDeviceCount() == 0,
                    reason='OpenCV built without CUDA or no CUDA device')
def test_cuda_sgm_recovers_constant_shift(textured_pair):
    from accelerator import create_accelerator

    accelerator = create_accelerator('cuda')
    matcher = OpenCVCudaStereoSGM(accelerator)
    left, right = textured_pair(shift=8)

    disparity = run_matcher(matcher, accelerator, left, right)

    region = disparity[8:-8, 72:-16]
    valid = region[region != matcher.invalid_disparity()]
    assert np.median(valid) / matcher.subpixel_scale == pytest.approx(8, abs=1)

import numpy as np
import pytest

from glvem.preprocess.filters import preprocess
from glvem.preprocess.normalize import ZeroAbundanceError


def test_detection_limit_snaps_to_zero():
    counts = np.array(
        [
            [1.0, 50.0, 30.0],
            [99999.0, 50.0, 30.0],
            [0.0, 0.0, 40.0],
        ]
    )
    pre = preprocess(counts)
    assert pre.abundance[0, 0] == 0.0
    assert np.allclose(pre.abundance.sum(axis=0), 1.0)


def test_default_deviation_excludes_nothing():
    rng = np.random.default_rng(3)
    counts = rng.integers(1, 100, size=(4, 10)).astype(float)
    pre = preprocess(counts)
    assert not pre.mask.any()
    assert pre.mask.shape == counts.shape


def test_deviation_excludes_low_relative_to_mad():
    counts = np.array(
        [
            [1.0, 10.0, 20.0, 30.0, 40.0],
            [99.0, 90.0, 80.0, 70.0, 60.0],
        ]
    )
    pre = preprocess(counts, deviation=0.5)
    ratio = pre.abundance[0] / pre.taxon_mad[0]
    assert np.array_equal(pre.mask[0], ratio < 0.5)
    assert pre.mask[0, 0]


def test_outputs_are_read_only():
    pre = preprocess(np.array([[1.0, 2.0], [3.0, 4.0]]))
    with pytest.raises(ValueError):
        pre.abundance[0, 0] = 1.0
    with pytest.raises(ValueError):
        pre.mask[0, 0] = True


def test_sample_below_detection_limit_is_fatal():
    counts = np.array([[1.0, 0.0], [2.0, 0.0]])
    with pytest.raises(ZeroAbundanceError):
        preprocess(counts)

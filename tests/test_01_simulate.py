"""
This module contains the unit tests for the `simulate` module from the `sysobs` package.
"""

import numpy as np
import pytest

from sysobs.model import ModelParameters
from sysobs.simulate import (check_boundaries, scene_boundaries_from_cuts,
                             uniform_scene_boundaries, load_scene_cuts, scene_signal,
                             smooth_signal, create_driver, simulate_model)


def test_scene_boundaries_from_cuts():
    """
    Cut times are converted to sample indices, cuts outside the signal are dropped and the
    partition is framed by 0 and the number of samples.
    """
    boundaries = scene_boundaries_from_cuts([0.501, 0.251, 2.0, 0.001, 0.251], 1000, 1000)
    np.testing.assert_array_equal(boundaries, [0, 250, 500, 1000])

    # Cut at the last sample is outside the open interval
    boundaries = scene_boundaries_from_cuts([1.0], 1000, 1000)
    np.testing.assert_array_equal(boundaries, [0, 1000])


def test_scene_boundaries_from_cuts_single_scene():
    """
    A cut source with no value inside the signal degenerates to one scene, not an error.
    """
    np.testing.assert_array_equal(scene_boundaries_from_cuts([], 1000, 1000), [0, 1000])
    np.testing.assert_array_equal(scene_boundaries_from_cuts([5.0, -1.0], 1000, 1000),
                                  [0, 1000])

    driver, boundaries = create_driver(1000, np.random.default_rng(0), cut_times=[5.0],
                                       s_rate=1000)
    np.testing.assert_array_equal(boundaries, [0, 1000])
    assert driver.shape == (1000,)


def test_scene_boundaries_from_cuts_errors():
    """Missing sampling rate and degenerate signal lengths are rejected."""
    with pytest.raises(ValueError):
        scene_boundaries_from_cuts([0.5], None, 1000)
    with pytest.raises(ValueError):
        scene_boundaries_from_cuts([0.5], 1000, 1)


def test_uniform_scene_boundaries():
    """
    The uniform partition follows MATLAB rounding of an evenly spaced grid from the first to the
    last sample, with the last sample forming its own scene.
    """
    boundaries = uniform_scene_boundaries(1000, 8)
    np.testing.assert_array_equal(boundaries,
                                  [0, 125, 250, 375, 500, 624, 749, 874, 999, 1000])

    # More scenes than samples collapses duplicate boundaries
    boundaries = uniform_scene_boundaries(3, 10)
    np.testing.assert_array_equal(boundaries, [0, 1, 2, 3])

    with pytest.raises(ValueError):
        uniform_scene_boundaries(1000, 0)
    with pytest.raises(ValueError):
        uniform_scene_boundaries(1, 8)


@pytest.mark.parametrize("n_samples", [2, 7, 100, 1001])
@pytest.mark.parametrize("n_scenes", [1, 3, 8])
def test_boundaries_partition_signal(n_samples, n_scenes):
    """
    Scene boundaries are strictly increasing, start at 0, end at the signal length and assign
    every sample to exactly one scene.
    """
    boundaries = uniform_scene_boundaries(n_samples, n_scenes)
    assert boundaries[0] == 0
    assert boundaries[-1] == n_samples
    assert np.all(np.diff(boundaries) > 0)

    scene_idx = np.repeat(np.arange(len(boundaries) - 1), np.diff(boundaries))
    assert scene_idx.shape[0] == n_samples


def test_check_boundaries():
    """Invalid partitions raise ValueError."""
    np.testing.assert_array_equal(check_boundaries([0, 5, 10], 10), [0, 5, 10])
    for boundaries in ([1, 5, 10], [0, 5, 9], [0, 5, 5, 10], [0, 6, 5, 10], [0]):
        with pytest.raises(ValueError):
            check_boundaries(boundaries, 10)


def test_scene_signal_change_points(rng):
    """
    Boundaries [1, 251, 501, 1000, 1001] (1-based) give a base signal whose value changes exactly
    at samples 251, 501 and 1000.
    """
    boundaries = np.array([1, 251, 501, 1000, 1001]) - 1
    base = scene_signal(boundaries, rng)

    assert base.shape == (1000,)
    change_points = np.nonzero(np.diff(base))[0] + 1
    np.testing.assert_array_equal(change_points + 1, [251, 501, 1000])
    assert np.all(np.abs(base) <= 1)


def test_smooth_signal_movmean():
    """The moving average shrinks its window at the edges instead of padding."""
    smoothed = smooth_signal(np.array([1., 2., 3., 4., 5.]), window=5)
    np.testing.assert_allclose(smoothed, [2., 2.5, 3., 3.5, 4.])

    impulse = np.zeros(11)
    impulse[5] = 5
    smoothed = smooth_signal(impulse, window=5)
    np.testing.assert_allclose(smoothed[3:8], np.ones(5))
    np.testing.assert_allclose(smoothed[:3], 0)

    # Constant signals are unchanged, including windows longer than the signal
    np.testing.assert_allclose(smooth_signal(np.full(3, 2.0), window=5), np.full(3, 2.0))


def test_smooth_signal_gaussian():
    """The Gaussian-weighted average preserves constants and is symmetric around an impulse."""
    np.testing.assert_allclose(smooth_signal(np.full(20, -0.5), method='gaussian'),
                               np.full(20, -0.5))

    impulse = np.zeros(11)
    impulse[5] = 1
    smoothed = smooth_signal(impulse, window=5, method='gaussian')
    np.testing.assert_allclose(smoothed[3:5], smoothed[6:8][::-1])
    assert np.argmax(smoothed) == 5

    with pytest.raises(ValueError):
        smooth_signal(impulse, method='median')
    with pytest.raises(ValueError):
        smooth_signal(impulse, window=0)


def test_create_driver_deterministic():
    """Identical generator state and boundary source give identical drivers."""
    driver_1, bounds_1 = create_driver(1000, np.random.default_rng(42))
    driver_2, bounds_2 = create_driver(1000, np.random.default_rng(42))
    np.testing.assert_array_equal(driver_1, driver_2)
    np.testing.assert_array_equal(bounds_1, bounds_2)

    driver_3, _ = create_driver(1000, 42)
    np.testing.assert_array_equal(driver_1, driver_3)

    driver_4, _ = create_driver(1000, np.random.default_rng(43))
    assert not np.allclose(driver_1, driver_4)


def test_create_driver_boundary_sources(rng):
    """Explicit boundaries take precedence over cut times, which take precedence over scenes."""
    _, boundaries = create_driver(1000, rng, boundaries=[0, 400, 1000], cut_times=[0.25],
                                  s_rate=1000)
    np.testing.assert_array_equal(boundaries, [0, 400, 1000])

    _, boundaries = create_driver(1000, rng, cut_times=[0.25], s_rate=1000, n_scenes=4)
    np.testing.assert_array_equal(boundaries, [0, 249, 1000])

    _, boundaries = create_driver(1000, rng, n_scenes=4)
    np.testing.assert_array_equal(boundaries, uniform_scene_boundaries(1000, 4))

    with pytest.raises(ValueError):
        create_driver(1000, rng, cut_times=[0.25])
    with pytest.raises(ValueError):
        create_driver(1000, rng, boundaries=[0, 400, 999])
    with pytest.raises(ValueError):
        create_driver(1, rng)


def test_create_driver_noise_channel(rng):
    """The optional second row is independent standard-normal noise."""
    driver, _ = create_driver(20000, rng, noise_channel=True)
    assert driver.shape == (2, 20000)
    assert np.isclose(np.std(driver[1, :]), 1.0, atol=0.05)
    assert np.isclose(np.mean(driver[1, :]), 0.0, atol=0.05)
    assert abs(np.corrcoef(driver)[0, 1]) < 0.05


def test_create_driver_structure():
    """Smoothed noise stays around the scene values."""
    boundaries = [0, 5000, 10000]
    driver, _ = create_driver(10000, np.random.default_rng(7), boundaries=boundaries)
    base = scene_signal(boundaries, np.random.default_rng(7))
    # Five-sample averaging reduces the noise standard deviation from 0.5 to about 0.22
    residual = driver - base
    assert np.isclose(np.std(residual[10:-10]), 0.5 / np.sqrt(5), atol=0.02)


def test_load_scene_cuts(tmp_path):
    """Scene-cut files are parsed one value per row; malformed rows raise ValueError."""
    fname = tmp_path / 'cuts.csv'
    fname.write_text('0.5\n1.25\n\n2\n', encoding='utf-8')
    np.testing.assert_allclose(load_scene_cuts(fname), [0.5, 1.25, 2.0])

    fname = tmp_path / 'cuts.tsv'
    fname.write_text('scene\ttime\n1\t0.5\n2\t3.5\n', encoding='utf-8')
    np.testing.assert_allclose(load_scene_cuts(fname, delimiter='\t', column=1,
                                               skip_header=True), [0.5, 3.5])

    fname = tmp_path / 'bad.csv'
    fname.write_text('0.5\nabc\n', encoding='utf-8')
    with pytest.raises(ValueError):
        load_scene_cuts(fname)


def test_simulate_model():
    """
    Channels are identical without offsets, and the observer offset scales the second channel
    only.
    """
    params = ModelParameters(a=1.0, b=0.5, c=0.2, k=1.0, da=0.0, dk=0.0, s1=1.0, s2=0.0)
    inputs = np.sin(np.linspace(0, 10, 500))

    data, states = simulate_model(params, inputs, 100, log_precision=np.inf)
    assert data.shape == (2, 500)
    np.testing.assert_allclose(data[0, :], data[1, :])
    np.testing.assert_allclose(data, states)
    np.testing.assert_array_equal(states[:, 0], [0, 0])

    obs_data, obs_states = simulate_model(params.replace(dk=0.5), inputs, 100,
                                          log_precision=np.inf)
    np.testing.assert_allclose(obs_states, states)
    np.testing.assert_allclose(obs_data[1, :], 1.5 * states[1, :])

    sys_data, _ = simulate_model(params.replace(da=1.0), inputs, 100, log_precision=np.inf)
    np.testing.assert_allclose(sys_data[0, 1], data[0, 1])
    assert not np.allclose(sys_data[1, :], data[1, :])


def test_simulate_model_noise(rng):
    """Observation noise has standard deviation exp(-log_precision / 2)."""
    params = ModelParameters(a=1.0, b=0.5, c=0.2, k=1.0, da=0.0, dk=0.0, s1=1.0, s2=0.0)
    inputs = np.zeros((2, 20000))
    data, _ = simulate_model(params, inputs, 100, log_precision=2.0, rng=rng)
    assert np.isclose(np.std(data), np.exp(-1), rtol=0.05)

    data_1, _ = simulate_model(params, inputs, 100, log_precision=2.0, rng=5)
    data_2, _ = simulate_model(params, inputs, 100, log_precision=2.0, rng=5)
    np.testing.assert_array_equal(data_1, data_2)

    with pytest.raises(ValueError):
        simulate_model(params, np.zeros((3, 10)), 100)
    with pytest.raises(ValueError):
        simulate_model(params, inputs, 0)

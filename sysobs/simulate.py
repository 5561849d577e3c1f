"""
Synthesis of exogenous driver signals and forward simulation of the two-channel model.

This module generates the inputs and synthetic recordings used to test whether differences
between two channels are best explained by the system (latent dynamics) or by the observer
(observation mapping).

Key functionalities
-------------------
- **Scene partitions:** Split a signal of N samples into contiguous scenes, either from scene-cut
  times (e.g. read from a file with `load_scene_cuts`) or as a uniform partition.
- **Driver synthesis:** Hold one uniform random value per scene, add Gaussian noise and smooth
  with a centered moving (or Gaussian-weighted) average (`create_driver`).
- **Forward simulation:** Integrate the generative model of `sysobs.model` under a given input
  and add observation noise at a given log-precision (`simulate_model`).

Notes
-----
- Sample indices are 0-based. Scene boundaries run from 0 to N (exclusive end), so a boundary at
  1-based sample ``i`` is stored as ``i - 1``.
- All randomness is drawn from a caller-owned `numpy.random.Generator`. Passing the same
  generator state (or seed) reproduces the same output.
"""

import csv

import numpy as np

from sysobs.model import ModelParameters, flow, observe
from sysobs.util import matlab_round


def check_boundaries(boundaries, n_samples):
    """
    Validate a scene partition.

    Parameters
    ----------
    boundaries : array_like of int
        Scene boundaries (0-based), including the sentinel `n_samples`.
    n_samples : int
        Number of samples in the signal.

    Returns
    -------
    boundaries : np.ndarray of int

    Raises
    ------
    ValueError
        If the boundaries are not strictly increasing, do not start at 0 or do not end at
        `n_samples`.
    """

    boundaries = np.asarray(boundaries, dtype=np.int64)
    if boundaries.ndim != 1 or boundaries.shape[0] < 2:
        raise ValueError('a scene partition needs at least two boundaries')
    if boundaries[0] != 0 or boundaries[-1] != n_samples:
        raise ValueError(f'scene boundaries must run from 0 to {n_samples}, got '
                         f'{boundaries[0]} to {boundaries[-1]}')
    if np.any(np.diff(boundaries) <= 0):
        raise ValueError('scene boundaries must be strictly increasing')
    return boundaries


def _check_n_samples(n_samples):
    if int(n_samples) != n_samples or n_samples <= 1:
        raise ValueError(f'number of samples must be an integer greater than 1, got {n_samples}')
    return int(n_samples)


def scene_boundaries_from_cuts(cut_times, s_rate, n_samples):
    """
    Scene boundaries from scene-cut times.

    Each cut time is converted to a 1-based sample index with ``round(t * s_rate)``. Only indices
    strictly inside ``(1, n_samples)`` are kept; the rest are dropped without warning.

    Parameters
    ----------
    cut_times : array_like of float
        Scene-cut times in seconds.
    s_rate : float
        Sampling rate (Hz).
    n_samples : int
        Number of samples in the signal.

    Returns
    -------
    boundaries : np.ndarray of int
        Sorted, de-duplicated 0-based boundaries, starting at 0 and ending at `n_samples`. If no
        cut falls inside the signal this is ``[0, n_samples]``, a single scene.

    Raises
    ------
    ValueError
        If `n_samples` is smaller than 2 or `s_rate` is not positive.
    """

    n_samples = _check_n_samples(n_samples)
    if s_rate is None or s_rate <= 0:
        raise ValueError('a positive sampling rate is required to convert scene-cut times')

    cut_times = np.asarray(cut_times, dtype=float).ravel()
    cut_idx = matlab_round(cut_times * s_rate)
    cut_idx = cut_idx[(cut_idx > 1) & (cut_idx < n_samples)]

    boundaries = np.unique(np.concatenate(([0], cut_idx - 1, [n_samples])))
    return check_boundaries(boundaries, n_samples)


def uniform_scene_boundaries(n_samples, n_scenes=8):
    """
    Scene boundaries from a uniform partition.

    Boundaries are placed at ``round(linspace(1, n_samples, n_scenes + 1))`` (1-based) followed by
    the sentinel. As the last grid point is the final sample itself, the final scene holds one
    sample and the partition has ``n_scenes + 1`` scenes.

    Parameters
    ----------
    n_samples : int
        Number of samples in the signal.
    n_scenes : int, optional
        Number of evenly spaced scenes (default: 8).

    Returns
    -------
    boundaries : np.ndarray of int
        Sorted, de-duplicated 0-based boundaries ending at `n_samples`.

    Raises
    ------
    ValueError
        If `n_samples` is smaller than 2 or `n_scenes` is smaller than 1.
    """

    n_samples = _check_n_samples(n_samples)
    if n_scenes < 1:
        raise ValueError(f'number of scenes must be at least 1, got {n_scenes}')

    grid = matlab_round(np.linspace(1, n_samples, int(n_scenes) + 1))
    boundaries = np.unique(np.concatenate((grid - 1, [n_samples])))
    return check_boundaries(boundaries, n_samples)


def load_scene_cuts(fname, delimiter=',', column=0, skip_header=False):
    """
    Read scene-cut times (in seconds) from a delimited text file.

    Parameters
    ----------
    fname : str or pathlib.Path
        Path to the file. One cut time per row.
    delimiter : str, optional
        Column delimiter (default: ',').
    column : int, optional
        Column holding the cut times (default: 0).
    skip_header : bool, optional
        Whether the first row is a header (default: False).

    Returns
    -------
    cut_times : np.ndarray of float

    Raises
    ------
    ValueError
        If a row cannot be parsed as a number.
    """

    cut_times = []
    with open(fname, 'r', encoding="utf-8", newline='') as file:
        reader = csv.reader(file, delimiter=delimiter)
        if skip_header:
            next(reader, None)
        for row_idx, row in enumerate(reader):
            if not row or not ''.join(row).strip():
                continue
            try:
                cut_times.append(float(row[column]))
            except (ValueError, IndexError) as err:
                raise ValueError(f'could not parse scene-cut time in row {row_idx} of '
                                 f'{fname}: {row}') from err
    return np.array(cut_times, dtype=float)


def scene_signal(boundaries, rng):
    """
    Piecewise-constant signal with one uniform random value in [-1, 1] per scene.

    Parameters
    ----------
    boundaries : array_like of int
        Valid scene partition (see `check_boundaries`); the last entry is the signal length.
    rng : numpy.random.Generator or int
        Random generator (or seed).

    Returns
    -------
    signal : np.ndarray, shape (n_samples,)
    """

    rng = np.random.default_rng(rng)
    boundaries = np.asarray(boundaries, dtype=np.int64)
    n_samples = int(boundaries[-1])
    boundaries = check_boundaries(boundaries, n_samples)

    scene_values = rng.uniform(-1, 1, boundaries.shape[0] - 1)
    return np.repeat(scene_values, np.diff(boundaries))


def smooth_signal(signal, window=5, method='movmean'):
    """
    Centered moving average with a window that shrinks at the signal edges.

    Parameters
    ----------
    signal : array_like, shape (n_samples,)
        Signal to smooth.
    window : int, optional
        Window width in samples (default: 5).
    method : {'movmean', 'gaussian'}, optional
        Flat moving average, or Gaussian-weighted average with a standard deviation of
        ``window / 5`` samples (default: 'movmean').

    Returns
    -------
    smoothed : np.ndarray, shape (n_samples,)

    Raises
    ------
    ValueError
        If `window` is smaller than 1 or `method` is not recognised.

    Notes
    -----
    - Near the edges only the samples inside the signal contribute, and the weights are
      renormalized over them. The signal is never padded.
    """

    signal = np.asarray(signal, dtype=float)
    if window < 1:
        raise ValueError(f'smoothing window must be at least 1 sample, got {window}')

    offsets = np.arange(window) - (window - 1) / 2
    if method == 'movmean':
        kernel = np.ones(window)
    elif method == 'gaussian':
        kernel = np.exp(-0.5 * (offsets / (window / 5)) ** 2)
    else:
        raise ValueError(f"smoothing method must be 'movmean' or 'gaussian', got {method!r}")

    # full convolution then centre crop, valid for windows longer than the signal
    start = (window - 1) // 2
    stop = start + signal.shape[0]
    weighted = np.convolve(signal, kernel)[start:stop]
    weights = np.convolve(np.ones_like(signal), kernel)[start:stop]
    return weighted / weights


def create_driver(n_samples, rng, cut_times=None, s_rate=None, n_scenes=8, boundaries=None,
                  noise_sd=0.5, smooth_window=5, smooth_method='movmean', noise_channel=False):
    """
    Synthesize an exogenous driver with slow scene structure and fast noise.

    The scene partition comes from, in order of precedence: explicit `boundaries`, scene-cut
    times (`cut_times` with `s_rate`), or a uniform partition into `n_scenes`.

    Parameters
    ----------
    n_samples : int
        Number of samples (must be > 1).
    rng : numpy.random.Generator or int
        Caller-owned random generator (or seed).
    cut_times : array_like of float, optional
        Scene-cut times in seconds.
    s_rate : float, optional
        Sampling rate (Hz); required with `cut_times`.
    n_scenes : int, optional
        Number of scenes of the uniform partition (default: 8).
    boundaries : array_like of int, optional
        Explicit 0-based scene boundaries ending at `n_samples`.
    noise_sd : float, optional
        Standard deviation of the additive Gaussian noise (default: 0.5).
    smooth_window : int, optional
        Smoothing window in samples (default: 5).
    smooth_method : {'movmean', 'gaussian'}, optional
        Smoothing kernel (default: 'movmean').
    noise_channel : bool, optional
        If True, append an independent standard-normal row (default: False).

    Returns
    -------
    driver : np.ndarray, shape (n_samples,) or (2, n_samples)
        Smoothed driver, with the noise channel as second row if requested.
    boundaries : np.ndarray of int
        Scene boundaries used.

    Raises
    ------
    ValueError
        If `n_samples` is smaller than 2, `cut_times` are given without `s_rate`, or explicit
        `boundaries` do not partition the signal.
    """

    n_samples = _check_n_samples(n_samples)
    rng = np.random.default_rng(rng)

    if boundaries is not None:
        boundaries = check_boundaries(boundaries, n_samples)
    elif cut_times is not None:
        boundaries = scene_boundaries_from_cuts(cut_times, s_rate, n_samples)
    else:
        boundaries = uniform_scene_boundaries(n_samples, n_scenes)

    base = scene_signal(boundaries, rng)
    noisy = base + rng.normal(0, noise_sd, n_samples)
    driver = smooth_signal(noisy, window=smooth_window, method=smooth_method)

    if noise_channel:
        driver = np.vstack([driver, rng.standard_normal(n_samples)])

    return driver, boundaries


def simulate_model(params, inputs, s_rate, log_precision=8.0, rng=None, x0=None):
    """
    Simulate the two-channel generative model under a given input.

    The latent states are integrated with an Euler scheme at the sampling interval, and Gaussian
    observation noise with standard deviation ``exp(-log_precision / 2)`` is added to each
    channel.

    Parameters
    ----------
    params : ModelParameters or array_like
        Generating parameters (record or vector ordered like `PARAMETER_NAMES`).
    inputs : array_like, shape (n_samples,) or (n_inputs, n_samples)
        Exogenous input. A single row is used as the driver; the noise-channel input is then zero.
    s_rate : float
        Sampling rate (Hz).
    log_precision : float, optional
        Log-precision of the observation noise (default: 8). Use ``np.inf`` for noiseless data.
    rng : numpy.random.Generator or int, optional
        Random generator (or seed) for observation noise.
    x0 : array_like, shape (2,), optional
        Initial latent states (default: zeros).

    Returns
    -------
    data : np.ndarray, shape (2, n_samples)
        Observed channels.
    states : np.ndarray, shape (2, n_samples)
        Latent states.

    Raises
    ------
    ValueError
        If the sampling rate is not positive or more than two input rows are given.
    """

    if s_rate <= 0:
        raise ValueError('sampling rate must be positive')
    if not isinstance(params, ModelParameters):
        params = ModelParameters.from_vector(params)

    inputs = np.atleast_2d(np.asarray(inputs, dtype=float))
    if inputs.shape[0] > 2:
        raise ValueError(f'expected at most 2 input rows, got {inputs.shape[0]}')
    if inputs.shape[0] == 1:
        inputs = np.vstack([inputs, np.zeros_like(inputs)])
    n_samples = inputs.shape[1]

    d_t = 1.0 / s_rate
    states = np.zeros((2, n_samples))
    x = np.zeros(2) if x0 is None else np.asarray(x0, dtype=float)
    for t_idx in range(n_samples):
        states[:, t_idx] = x
        x = x + d_t * flow(x, inputs[:, t_idx], params)

    data = observe(states, params)
    if np.isfinite(log_precision):
        rng = np.random.default_rng(rng)
        data = data + rng.normal(0, np.exp(-log_precision / 2), data.shape)

    return data, states

"""
Two-channel generative model with system and observer asymmetries.

This module defines the parameterization shared by simulation, inversion and model reduction.
Two latent processes are driven by the same exogenous input and are symmetrically coupled. The
second channel differs from the first by a *system* offset on its self-decay (`da`) and by an
*observer* offset on its observation gain (`dk`):

    dx_i/dt = -a_i x_i + b tanh(x_i) + c (x_j - x_i) + s1 u1 + s2 u2
    y_i     = k_i x_i

with ``a_1 = a``, ``a_2 = a + da``, ``k_1 = k`` and ``k_2 = k + dk``.

Key functionalities
-------------------
- **Parameter record:** `ModelParameters`, a closed record over `PARAMETER_NAMES` with vector
  conversion for use with covariance matrices.
- **Reduced models:** `ReducedModel` marks a set of parameters as fixed (zero prior variance);
  `standard_hypotheses` enumerates the system/observer hypotheses.
- **Dynamics:** `flow` and `observe` evaluate the equations above.
- **Model specification:** `default_priors` and `model_spec` describe the model for an inversion
  engine.
"""

from collections import namedtuple

import numpy as np

PARAMETER_NAMES = ('a', 'b', 'c', 'k', 'da', 'dk', 's1', 's2')


class ModelParameters(namedtuple('ModelParameters', PARAMETER_NAMES)):
    """
    Point in the parameter space of the two-channel model.

    The set of fields is closed: constructing or replacing with a field outside
    `PARAMETER_NAMES` raises an error instead of silently adding it.

    Attributes
    ----------
    a : float
        Self-decay rate of the latent states.
    b : float
        Gain of the nonlinear self-excitation ``tanh(x)``.
    c : float
        Coupling strength between the two latent states.
    k : float
        Observation gain.
    da : float
        System offset: added to `a` for the second channel.
    dk : float
        Observer offset: added to `k` for the second channel.
    s1 : float
        Gain of the first input row (the structured driver).
    s2 : float
        Gain of the second input row (the independent noise channel).
    """

    __slots__ = ()

    def to_vector(self):
        """Parameters as a float vector ordered like `PARAMETER_NAMES`."""
        return np.array(self, dtype=float)

    @classmethod
    def from_vector(cls, vec):
        """
        Build a parameter record from a vector ordered like `PARAMETER_NAMES`.

        Raises
        ------
        ValueError
            If `vec` does not hold exactly one value per parameter.
        """
        vec = np.asarray(vec, dtype=float).ravel()
        if vec.shape[0] != len(PARAMETER_NAMES):
            raise ValueError(f'expected {len(PARAMETER_NAMES)} parameter values, '
                             f'got {vec.shape[0]}')
        return cls(*[float(val) for val in vec])

    def replace(self, **fields):
        """Copy with some fields changed. Unknown fields raise ValueError."""
        unknown = set(fields) - set(PARAMETER_NAMES)
        if unknown:
            raise ValueError(f'unknown parameter(s): {sorted(unknown)}')
        return self._replace(**{name: float(val) for name, val in fields.items()})

    def as_dict(self):
        """Parameters as an ordered name -> value dictionary."""
        return dict(self._asdict())


def parameter_index(name):
    """
    Position of a parameter in `PARAMETER_NAMES`.

    Raises
    ------
    ValueError
        If `name` is not a model parameter.
    """
    if name not in PARAMETER_NAMES:
        raise ValueError(f'unknown parameter: {name!r}')
    return PARAMETER_NAMES.index(name)


class ReducedModel(namedtuple('ReducedModel', ['name', 'fixed'])):
    """
    Reduced model: the full model with a set of parameters fixed at their prior mean.

    Fixing a channel offset (`da` or `dk`) asserts that the corresponding quantity does not
    differ between the two channels.

    Attributes
    ----------
    name : str
        Label of the hypothesis.
    fixed : frozenset of str
        Names of the parameters whose prior variance is set to zero.
    """

    __slots__ = ()

    def __new__(cls, name, fixed=()):
        fixed = frozenset(fixed)
        for param in fixed:
            parameter_index(param)
        return super().__new__(cls, name, fixed)

    def mask(self):
        """Boolean vector over `PARAMETER_NAMES`, True where the parameter stays free."""
        return np.array([name not in self.fixed for name in PARAMETER_NAMES])

    def covariance(self, prior_cov):
        """
        Reduced prior covariance derived from the full prior covariance.

        Parameters
        ----------
        prior_cov : np.ndarray, shape (n_params, n_params)
            Prior covariance of the full model.

        Returns
        -------
        reduced_cov : np.ndarray, shape (n_params, n_params)
            Copy of `prior_cov` with the rows and columns of fixed parameters set to zero.

        Raises
        ------
        ValueError
            If `prior_cov` is not a square matrix over `PARAMETER_NAMES`.
        """
        prior_cov = np.asarray(prior_cov, dtype=float)
        n_params = len(PARAMETER_NAMES)
        if prior_cov.shape != (n_params, n_params):
            raise ValueError(f'prior covariance must be {n_params}x{n_params}, '
                             f'got {prior_cov.shape}')
        reduced_cov = prior_cov.copy()
        keep = self.mask()
        reduced_cov[~keep, :] = 0
        reduced_cov[:, ~keep] = 0
        return reduced_cov


def standard_hypotheses():
    """
    The four structural hypotheses compared for each inversion.

    Returns
    -------
    candidates : list of ReducedModel
        ``full`` (system and observer differ), ``system`` (only the dynamics differ),
        ``observer`` (only the observation gain differs) and ``null`` (identical channels).
    """
    return [
        ReducedModel('full'),
        ReducedModel('system', ['dk']),
        ReducedModel('observer', ['da']),
        ReducedModel('null', ['da', 'dk']),
    ]


def default_priors(variance=1 / 16):
    """
    Prior mean and covariance of the full model.

    Parameters
    ----------
    variance : float, optional
        Prior variance of every parameter (default: 1/16).

    Returns
    -------
    prior_mean : ModelParameters
        Symmetric channels (``da = dk = 0``) driven by the first input only.
    prior_cov : np.ndarray, shape (8, 8)
        Diagonal prior covariance.
    """
    prior_mean = ModelParameters(a=1.0, b=0.5, c=0.2, k=1.0, da=0.0, dk=0.0, s1=1.0, s2=0.0)
    prior_cov = np.eye(len(PARAMETER_NAMES)) * variance
    return prior_mean, prior_cov


def flow(x, u, params):
    """
    Equations of motion of the two latent states.

    Parameters
    ----------
    x : array_like, shape (2,)
        Latent states.
    u : array_like, shape (2,)
        Exogenous inputs at the current time.
    params : ModelParameters
        Model parameters.

    Returns
    -------
    dxdt : np.ndarray, shape (2,)
    """
    x = np.asarray(x, dtype=float)
    decay = np.array([params.a, params.a + params.da])
    drive = params.s1 * u[0] + params.s2 * u[1]
    return -decay * x + params.b * np.tanh(x) + params.c * (x[::-1] - x) + drive


def observe(x, params):
    """
    Observation mapping from latent states to recorded channels.

    Parameters
    ----------
    x : array_like, shape (2,) or (2, n_samples)
        Latent states.
    params : ModelParameters
        Model parameters.

    Returns
    -------
    y : np.ndarray
        Same shape as `x`.
    """
    x = np.asarray(x, dtype=float)
    gain = np.array([params.k, params.k + params.dk])
    if x.ndim > 1:
        gain = gain[:, np.newaxis]
    return gain * x


def model_spec(prior_mean, prior_cov, s_rate, log_precision=8.0, state_log_precision=16.0,
               embedding_order=6, smoothness=0.5, x0=None):
    """
    Specification of the generative model for an inversion engine.

    Parameters
    ----------
    prior_mean : ModelParameters
        Prior mean of the parameters.
    prior_cov : np.ndarray, shape (8, 8)
        Prior covariance of the parameters.
    s_rate : float
        Sampling rate of inputs and data (Hz).
    log_precision : float, optional
        Log-precision of observation noise (default: 8).
    state_log_precision : float, optional
        Log-precision of state noise (default: 16).
    embedding_order : int, optional
        Order of generalised coordinates used by the solver (default: 6).
    smoothness : float, optional
        Smoothness of the random fluctuations, in samples (default: 0.5).
    x0 : array_like, shape (2,), optional
        Initial latent states (default: zeros).

    Returns
    -------
    spec : dict
        Keys ``'pE'`` (name -> value), ``'pC'``, ``'x0'``, ``'dt'``, ``'V'`` and ``'W'``
        (log-precisions), ``'n'`` and ``'s'`` (embedding order and smoothness).

    Raises
    ------
    ValueError
        If the sampling rate is not positive or the prior covariance has the wrong shape.
    """
    if s_rate <= 0:
        raise ValueError('sampling rate must be positive')
    prior_cov = np.asarray(prior_cov, dtype=float)
    n_params = len(PARAMETER_NAMES)
    if prior_cov.shape != (n_params, n_params):
        raise ValueError(f'prior covariance must be {n_params}x{n_params}, '
                         f'got {prior_cov.shape}')
    if x0 is None:
        x0 = np.zeros(2)

    return {
        'pE': ModelParameters(*prior_mean).as_dict(),
        'pC': prior_cov,
        'x0': np.asarray(x0, dtype=float),
        'dt': 1.0 / s_rate,
        'V': float(log_precision),
        'W': float(state_log_precision),
        'n': int(embedding_order),
        's': float(smoothness),
    }

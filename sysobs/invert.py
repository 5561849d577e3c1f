"""
Inversion of the two-channel model and persistence of posterior estimates.

Model inversion itself (variational Laplace over generalised coordinates) is delegated to an
external engine. An engine is any callable with the signature

    engine(spec, inputs, data) -> (qE, qC)

where `spec` is the dictionary returned by `sysobs.model.model_spec`, `inputs` the (n_inputs x
n_samples) input matrix, `data` the (2 x n_samples) recordings, `qE` the posterior mean vector and
`qC` the posterior covariance over `PARAMETER_NAMES`. `SPMInversionEngine` implements this contract
with SPM's `spm_LAP` routine running in a standalone SPM session.

Key functionalities
-------------------
- **Inversion:** `invert_model` runs an engine and validates its output into a `Posterior`.
- **SPM adapter:** `SPMInversionEngine` writes the model and data to a temporary .mat file, runs
  `spm_LAP` and reads back the posterior.
- **Persistence:** `save_posterior` / `load_posterior` store one posterior bundle per subject and
  noise-precision level (`posterior_fname`), readable by both scipy and h5py (MATLAB v7.3).
"""

import logging
import os
import tempfile
from collections import namedtuple

import h5py
import numpy as np
from scipy.io import savemat, loadmat

from sysobs.model import PARAMETER_NAMES, ModelParameters
from sysobs.util import spm_context

logger = logging.getLogger(__name__)


class Posterior(namedtuple('Posterior', ['qE', 'qC', 'pE', 'pC', 'free_energy'])):
    """
    Posterior estimate of the model parameters with the priors it was obtained under.

    Attributes
    ----------
    qE : np.ndarray, shape (8,)
        Posterior mean, ordered like `PARAMETER_NAMES`.
    qC : np.ndarray, shape (8, 8)
        Posterior covariance.
    pE : np.ndarray, shape (8,)
        Prior mean.
    pC : np.ndarray, shape (8, 8)
        Prior covariance.
    free_energy : float
        Free energy of the full model reported by the engine (NaN if unavailable).
    """

    __slots__ = ()

    def __new__(cls, qE, qC, pE, pC, free_energy=np.nan):  # pylint: disable=invalid-name
        n_params = len(PARAMETER_NAMES)
        q_e = np.asarray(qE, dtype=float).ravel()
        p_e = np.asarray(pE, dtype=float).ravel()
        q_c = np.asarray(qC, dtype=float)
        p_c = np.asarray(pC, dtype=float)
        for name, vec in (('qE', q_e), ('pE', p_e)):
            if vec.shape != (n_params,):
                raise ValueError(f'{name} must have {n_params} entries, got {vec.shape[0]}')
        for name, mat in (('qC', q_c), ('pC', p_c)):
            if mat.shape != (n_params, n_params):
                raise ValueError(f'{name} must be {n_params}x{n_params}, got {mat.shape}')
        return super().__new__(cls, q_e, q_c, p_e, p_c, float(free_energy))

    def posterior_mean(self):
        """Posterior mean as a `ModelParameters` record."""
        return ModelParameters.from_vector(self.qE)


def invert_model(engine, spec, inputs, data):
    """
    Invert the two-channel model with an external engine.

    Parameters
    ----------
    engine : callable
        Inversion engine, ``engine(spec, inputs, data) -> (qE, qC)`` or
        ``(qE, qC, free_energy)``.
    spec : dict
        Model specification from `sysobs.model.model_spec`.
    inputs : np.ndarray, shape (n_inputs, n_samples)
        Exogenous inputs.
    data : np.ndarray, shape (2, n_samples)
        Recorded (or simulated) channels.

    Returns
    -------
    posterior : Posterior

    Raises
    ------
    ValueError
        If inputs and data disagree in length, or the engine returns estimates of the wrong shape.
    """

    inputs = np.atleast_2d(np.asarray(inputs, dtype=float))
    data = np.atleast_2d(np.asarray(data, dtype=float))
    if data.shape[0] != 2:
        raise ValueError(f'expected 2 data channels, got {data.shape[0]}')
    if inputs.shape[1] != data.shape[1]:
        raise ValueError(f'inputs have {inputs.shape[1]} samples but data have '
                         f'{data.shape[1]}')

    result = engine(spec, inputs, data)
    free_energy = np.nan
    if len(result) == 3:
        q_e, q_c, free_energy = result
    else:
        q_e, q_c = result

    p_e = ModelParameters(**spec['pE']).to_vector()
    return Posterior(q_e, q_c, p_e, spec['pC'], free_energy)


class SPMInversionEngine:
    """
    Inversion engine backed by SPM's `spm_LAP` routine.

    Parameters
    ----------
    spm_instance : spm_standalone, optional
        Active standalone SPM instance. If None, a temporary instance is created for each
        inversion and closed afterwards.
    n_iter : int, optional
        Maximum number of variational iterations (default: 32).
    viz : bool, optional
        Whether to let SPM draw its progress figures (default: False).

    Notes
    -----
    - The flow and observation functions are passed to MATLAB as anonymous functions matching
      `sysobs.model.flow` and `sysobs.model.observe`.
    - Inputs are passed as the causes of the second level, with high precision, so that they act
      as known exogenous drive.
    """

    FLOW = ("@(x,v,P) -[P.a; P.a + P.da].*x + P.b*tanh(x) + P.c*(flipud(x) - x)"
            " + P.s1*v(1) + P.s2*v(2)")
    OBSERVE = "@(x,v,P) [P.k; P.k + P.dk].*x"

    def __init__(self, spm_instance=None, n_iter=32, viz=False):
        self.spm_instance = spm_instance
        self.n_iter = n_iter
        self.viz = viz

    def script(self, in_fname, out_fname):
        """MATLAB code that inverts the model stored in `in_fname` and saves to `out_fname`."""
        return f"""
            load('{in_fname}');
            spm('defaults', 'EEG');
            spm_get_defaults('cmdline', {int(not self.viz)});
            M(1).E.s = s;
            M(1).E.n = n;
            M(1).E.d = 2;
            M(1).E.nN = {int(self.n_iter)};
            M(1).f = {self.FLOW};
            M(1).g = {self.OBSERVE};
            M(1).x = x0(:);
            M(1).pE = pE;
            M(1).pC = pC;
            M(1).V = exp(V);
            M(1).W = exp(W);
            M(2).v = zeros(size(U, 1), 1);
            M(2).V = exp(16);
            DEM.M = M;
            DEM.Y = Y;
            DEM.U = U;
            DEM = spm_LAP(DEM);
            qE = spm_vec(DEM.qP.P{{1}});
            qC = full(DEM.qP.C);
            F = DEM.F(end);
            save('{out_fname}', 'qE', 'qC', 'F', '-v7');
            """

    def __call__(self, spec, inputs, data):
        inputs = np.atleast_2d(inputs)
        if inputs.shape[0] == 1:
            inputs = np.vstack([inputs, np.zeros_like(inputs)])

        in_file, in_fname = tempfile.mkstemp(suffix='.mat')
        out_file, out_fname = tempfile.mkstemp(suffix='.mat')
        os.close(in_file)
        os.close(out_file)
        savemat(in_fname, {
            'pE': spec['pE'],
            'pC': spec['pC'],
            'x0': spec['x0'],
            'V': spec['V'],
            'W': spec['W'],
            'n': float(spec['n']),
            's': spec['s'],
            'U': inputs,
            'Y': np.asarray(data, dtype=float),
        })

        try:
            with spm_context(self.spm_instance) as spm:
                spm.spm_standalone(
                    "eval",
                    self.script(in_fname, out_fname),
                    nargout=0
                )
            result = loadmat(out_fname)
        finally:
            os.remove(in_fname)
            os.remove(out_fname)

        return (np.squeeze(result['qE']), np.asarray(result['qC']),
                float(np.squeeze(result['F'])))


def posterior_fname(results_dir, subj_id, log_precision):
    """
    Path of the posterior record for a subject at a noise-precision level.

    Parameters
    ----------
    results_dir : str or pathlib.Path
        Directory holding the records.
    subj_id : str
        Subject identifier.
    log_precision : float
        Log-precision of the observation noise the data were inverted at.

    Returns
    -------
    fname : str
        ``<results_dir>/<subj_id>_prec-<log_precision>.mat``
    """
    return os.path.join(str(results_dir), f'{subj_id}_prec-{log_precision:g}.mat')


def check_posterior_exists(fname):
    """
    Raise if no posterior record exists at `fname`.

    Raises
    ------
    FileNotFoundError
        If the record is missing.
    """
    if not os.path.exists(fname):
        raise FileNotFoundError(f'Posterior record not found: {fname}')


def save_posterior(fname, posterior):
    """
    Save a posterior bundle to a MATLAB .mat file.

    Parameters
    ----------
    fname : str or pathlib.Path
        Output path.
    posterior : Posterior
        Posterior estimate to store.
    """
    savemat(str(fname), {
        'qE': posterior.qE,
        'qC': posterior.qC,
        'pE': posterior.pE,
        'pC': posterior.pC,
        'F': posterior.free_energy,
        'names': np.asarray(PARAMETER_NAMES, dtype='object'),
    })
    logger.info('Saved posterior to %s', fname)


def load_posterior(fname):
    """
    Load a posterior bundle from a MATLAB .mat file.

    Both classic (v5/v7) and HDF5-based (v7.3) files are supported.

    Parameters
    ----------
    fname : str or pathlib.Path
        Path to the record.

    Returns
    -------
    posterior : Posterior

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    KeyError
        If a required field is missing from the file.
    """
    fname = str(fname)
    check_posterior_exists(fname)

    try:
        contents = loadmat(fname)
        fields = {key: np.asarray(contents[key], dtype=float)
                  for key in ('qE', 'qC', 'pE', 'pC')}
        free_energy = float(np.squeeze(contents['F'])) if 'F' in contents else np.nan
    except NotImplementedError:
        # MATLAB v7.3 files are HDF5 and stored column-major
        with h5py.File(fname, 'r') as file:
            fields = {key: np.asarray(file[key][()], dtype=float).T
                      for key in ('qE', 'qC', 'pE', 'pC')}
            free_energy = float(np.squeeze(file['F'][()])) if 'F' in file else np.nan

    return Posterior(fields['qE'], fields['qC'], fields['pE'], fields['pC'], free_energy)

"""
Bayesian model reduction and free-energy comparison of system and observer hypotheses.

Given the posterior of a full model (all parameters free), the evidence of any reduced model that
differs only in its prior covariance follows in closed form, without re-inverting the data. This
module scores each candidate hypothesis (e.g. "only the dynamics differ between channels") by its
log-evidence relative to the full model, normalizes the scores and converts them to posterior
model probabilities.

Key functionalities
-------------------
- **Reduced log-evidence:** `log_evidence` evaluates the Gaussian model-reduction formula for one
  reduced prior.
- **Evidence normalization:** `normalize_evidence` shifts an evidence vector so its worst model is
  at zero; `softmax` turns evidences into model probabilities.
- **Model comparison:** `reduce_models` scores a list of candidates against one posterior;
  `model_comparison` does so for a stored `Posterior`.
- **Batch comparison:** `batch_model_comparison` repeats the comparison over stored posteriors for
  many subjects and noise levels, optionally in parallel.

Notes
-----
- Reduced models share the prior mean of the full model and differ only in covariance. A zero
  prior variance fixes the parameter at its prior mean.
- Free energy differences are log Bayes factors; higher values indicate better model evidence.
"""

import logging

import numpy as np
from joblib import Parallel, delayed

from sysobs.invert import load_posterior, posterior_fname
from sysobs.model import ReducedModel, standard_hypotheses

logger = logging.getLogger(__name__)


def _regularized_inverse(mat):
    """
    Inverse of a (possibly singular) covariance after adding a small ridge, as `spm_inv` does.

    Zero variances become very large precisions, which pins the corresponding parameters.
    """
    n_dim = mat.shape[0]
    tol = max(np.spacing(np.linalg.norm(mat, np.inf)) * n_dim, np.exp(-32))
    return np.linalg.inv(mat + tol * np.eye(n_dim))


def _logdet(mat):
    sign, logdet = np.linalg.slogdet(mat)
    if sign <= 0:
        raise np.linalg.LinAlgError('matrix is not positive definite')
    return logdet


def _check_positive_definite(mat, name):
    try:
        np.linalg.cholesky(mat)
    except np.linalg.LinAlgError as err:
        raise np.linalg.LinAlgError(f'{name} is not positive definite') from err


def log_evidence(qE, qC, pE, pC, rE, rC):  # pylint: disable=invalid-name
    """
    Log-evidence of a reduced model relative to the full model.

    Parameters
    ----------
    qE : array_like, shape (n,)
        Posterior mean under the full model.
    qC : array_like, shape (n, n)
        Posterior covariance under the full model.
    pE : array_like, shape (n,)
        Prior mean of the full model.
    pC : array_like, shape (n, n)
        Prior covariance of the full model.
    rE : array_like, shape (n,)
        Prior mean of the reduced model.
    rC : array_like, shape (n, n)
        Prior covariance of the reduced model. May be singular: zero variances fix parameters.

    Returns
    -------
    free_energy : float
        Reduced minus full log-evidence (0 when the reduced prior equals the full prior).
    reduced_mean : np.ndarray, shape (n,)
        Posterior mean under the reduced model.
    reduced_cov : np.ndarray, shape (n, n)
        Posterior covariance under the reduced model.

    Raises
    ------
    ValueError
        If the shapes of the inputs do not match.
    numpy.linalg.LinAlgError
        If `qC` or `pC` is not positive definite.

    Notes
    -----
    With precisions ``qP = inv(qC)``, ``pP = inv(pC)``, ``rP = inv(rC)``:

        sP = qP + rP - pP,  sC = inv(sP),  sE = sC (qP qE + rP rE - pP pE)
        F  = 1/2 log|rP qP sC pC| - 1/2 (qE'qP qE + rE'rP rE - pE'pP pE - sE'sP sE)

    The formula is invariant to a common shift of all means, so it is evaluated with means
    centered on `pE`. This avoids cancellations between the very large precisions of fixed
    parameters.
    """

    q_e = np.asarray(qE, dtype=float).ravel()
    p_e = np.asarray(pE, dtype=float).ravel()
    r_e = np.asarray(rE, dtype=float).ravel()
    q_c = np.atleast_2d(np.asarray(qC, dtype=float))
    p_c = np.atleast_2d(np.asarray(pC, dtype=float))
    r_c = np.atleast_2d(np.asarray(rC, dtype=float))

    n_params = q_e.shape[0]
    for name, vec in (('pE', p_e), ('rE', r_e)):
        if vec.shape != (n_params,):
            raise ValueError(f'{name} has {vec.shape[0]} entries, expected {n_params}')
    for name, mat in (('qC', q_c), ('pC', p_c), ('rC', r_c)):
        if mat.shape != (n_params, n_params):
            raise ValueError(f'{name} has shape {mat.shape}, expected ({n_params}, {n_params})')

    _check_positive_definite(q_c, 'posterior covariance qC')
    _check_positive_definite(p_c, 'prior covariance pC')

    q_p = np.linalg.inv(q_c)
    p_p = np.linalg.inv(p_c)
    r_p = _regularized_inverse(r_c)

    q_e = q_e - p_e
    r_e = r_e - p_e

    s_p = q_p + r_p - p_p
    s_c = np.linalg.inv(s_p)
    s_e = s_c @ (q_p @ q_e + r_p @ r_e)

    # log|rP qP sC pC| as a sum of log-determinants
    logdet = _logdet(r_p) + _logdet(q_p) - _logdet(s_p) + _logdet(p_c)
    quad = q_e @ q_p @ q_e + r_e @ r_p @ r_e - s_e @ s_p @ s_e
    free_energy = (logdet - quad) / 2

    return float(free_energy), s_e + p_e, s_c


def normalize_evidence(free_energy):
    """
    Shift an evidence vector so that its minimum is exactly zero.

    Parameters
    ----------
    free_energy : array_like, shape (n_models,)
        Log-evidences.

    Returns
    -------
    rel_free_energy : np.ndarray, shape (n_models,)
        Evidence relative to the worst model. Differences between models are preserved.

    Raises
    ------
    ValueError
        If the vector is empty or contains non-finite values.
    """
    free_energy = np.asarray(free_energy, dtype=float).ravel()
    if free_energy.shape[0] == 0:
        raise ValueError('evidence vector is empty')
    if not np.all(np.isfinite(free_energy)):
        raise ValueError('evidence vector contains non-finite values')
    return free_energy - np.min(free_energy)


def softmax(free_energy):
    """
    Posterior model probabilities from log-evidences (flat prior over models).

    Parameters
    ----------
    free_energy : array_like, shape (n_models,)
        Log-evidences. Only differences matter.

    Returns
    -------
    probs : np.ndarray, shape (n_models,)
        Non-negative probabilities summing to one.

    Raises
    ------
    ValueError
        If the vector is empty or contains non-finite values.
    """
    free_energy = np.asarray(free_energy, dtype=float).ravel()
    if free_energy.shape[0] == 0:
        raise ValueError('evidence vector is empty')
    if not np.all(np.isfinite(free_energy)):
        raise ValueError('evidence vector contains non-finite values')
    exp_f = np.exp(free_energy - np.max(free_energy))
    return exp_f / np.sum(exp_f)


def reduce_models(qE, qC, pE, pC, candidates):  # pylint: disable=invalid-name
    """
    Compare reduced models against one posterior by Bayesian model reduction.

    Parameters
    ----------
    qE : array_like, shape (n,)
        Posterior mean under the full model.
    qC : array_like, shape (n, n)
        Posterior covariance under the full model.
    pE : array_like, shape (n,)
        Prior mean, shared by all reduced models.
    pC : array_like, shape (n, n)
        Prior covariance of the full model.
    candidates : list of ReducedModel or np.ndarray
        Reduced models, given either as `ReducedModel` (fixed parameter names) or directly as
        reduced prior covariance matrices.

    Returns
    -------
    rel_free_energy : np.ndarray, shape (n_candidates,)
        Log-evidence of each candidate, in the same order, relative to the worst candidate.

    Raises
    ------
    ValueError
        If no candidates are given or a covariance has the wrong shape.
    numpy.linalg.LinAlgError
        If `qC` or `pC` is not positive definite.
    """
    if len(candidates) == 0:
        raise ValueError('at least one reduced model is required')

    free_energy = []
    for candidate in candidates:
        if isinstance(candidate, ReducedModel):
            r_c = candidate.covariance(pC)
        else:
            r_c = candidate
        f_val, _, _ = log_evidence(qE, qC, pE, pC, pE, r_c)
        free_energy.append(f_val)

    return normalize_evidence(free_energy)


def model_comparison(posterior, candidates=None):
    """
    Score structural hypotheses for one inversion.

    Parameters
    ----------
    posterior : Posterior
        Posterior estimate of the full model.
    candidates : list of ReducedModel, optional
        Hypotheses to compare. Defaults to `standard_hypotheses()`.

    Returns
    -------
    rel_free_energy : np.ndarray, shape (n_candidates,)
        Log-evidence relative to the worst candidate.
    probs : np.ndarray, shape (n_candidates,)
        Posterior model probabilities.
    """
    if candidates is None:
        candidates = standard_hypotheses()
    rel_free_energy = reduce_models(posterior.qE, posterior.qC, posterior.pE, posterior.pC,
                                    candidates)
    return rel_free_energy, softmax(rel_free_energy)


def _compare_record(results_dir, subj_id, log_precision, candidates):
    fname = posterior_fname(results_dir, subj_id, log_precision)
    try:
        posterior = load_posterior(fname)
    except FileNotFoundError:
        logger.warning('No posterior for subject %s at log-precision %g, skipping',
                       subj_id, log_precision)
        return np.full(len(candidates), np.nan)

    rel_free_energy, _ = model_comparison(posterior, candidates)
    logger.info('Compared %d models for subject %s at log-precision %g',
                len(candidates), subj_id, log_precision)
    return rel_free_energy


def batch_model_comparison(results_dir, subj_ids, noise_levels, candidates=None, n_jobs=1):
    """
    Compare hypotheses across stored posteriors for many subjects and noise levels.

    Parameters
    ----------
    results_dir : str or pathlib.Path
        Directory holding posterior records named by `posterior_fname`.
    subj_ids : list of str
        Subject identifiers.
    noise_levels : list of float
        Log-precisions of the observation noise.
    candidates : list of ReducedModel, optional
        Hypotheses to compare. Defaults to `standard_hypotheses()`.
    n_jobs : int, optional
        Number of parallel jobs (default: 1). Items are independent.

    Returns
    -------
    rel_free_energy : np.ndarray, shape (n_subjects, n_noise_levels, n_candidates)
        Relative log-evidence of each candidate. Missing records give rows of NaN.

    Notes
    -----
    - Missing records are logged and skipped; the remaining items are still compared.
    - Numerical and validation errors in a record are not caught.
    """
    if candidates is None:
        candidates = standard_hypotheses()

    items = [(subj_id, log_precision) for subj_id in subj_ids for log_precision in noise_levels]
    results = Parallel(n_jobs=n_jobs)(
        delayed(_compare_record)(results_dir, subj_id, log_precision, candidates)
        for subj_id, log_precision in items
    )

    return np.array(results, dtype=float).reshape(len(subj_ids), len(noise_levels),
                                                  len(candidates))

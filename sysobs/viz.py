"""
Visualization of driver signals and model comparison results.

Functions in this module draw into a user-supplied matplotlib axis so they can be composed into
multi-panel figures.

Key functionalities
-------------------
- **Driver display:** `plot_driver` shows a synthesized input with its scene boundaries.
- **Model evidence display:** `plot_model_evidence` shows relative free energy per hypothesis,
  optionally annotated with posterior model probabilities.
"""

import numpy as np
import matplotlib.pyplot as plt

from sysobs.reduce import normalize_evidence, softmax


def plot_driver(driver, s_rate, axis, boundaries=None, color='k', boundary_color='r'):
    """
    Plot a driver signal over time with optional scene boundaries.

    Parameters
    ----------
    driver : np.ndarray, shape (n_samples,) or (n_inputs, n_samples)
        Driver signal. Only the first row is plotted for multi-row inputs.
    s_rate : float
        Sampling rate (Hz).
    axis : matplotlib.axes.Axes
        Axes on which to draw.
    boundaries : array_like of int, optional
        Scene boundaries (0-based samples). Inner boundaries are drawn as dashed vertical lines.
    color : str, optional
        Color of the signal trace (default: 'k').
    boundary_color : str, optional
        Color of the boundary lines (default: 'r').

    Returns
    -------
    line : matplotlib.lines.Line2D
        The plotted signal trace.
    """

    driver = np.atleast_2d(driver)
    times = np.arange(driver.shape[1]) / s_rate
    line = axis.plot(times, driver[0, :], color=color)[0]

    if boundaries is not None:
        for boundary in np.asarray(boundaries)[1:-1]:
            axis.axvline(x=boundary / s_rate, color=boundary_color, linestyle='--')

    axis.set_xlim(times[0], times[-1])
    axis.set_xlabel('Time (s)')
    axis.set_ylabel('Driver')
    return line


def plot_model_evidence(free_energy, model_names, axis, show_probs=True, cmap='cool'):
    """
    Bar plot of free energy relative to the worst model.

    Parameters
    ----------
    free_energy : array_like, shape (n_models,)
        Log-evidence of each model (normalized or not).
    model_names : list of str
        Label of each model.
    axis : matplotlib.axes.Axes
        Axes on which to draw.
    show_probs : bool, optional
        If True, write the posterior probability of each model above its bar (default: True).
    cmap : str, optional
        Colormap used to color the bars (default: 'cool').

    Returns
    -------
    bars : matplotlib.container.BarContainer

    Raises
    ------
    ValueError
        If the number of names does not match the number of models.
    """

    rel_free_energy = normalize_evidence(free_energy)
    if len(model_names) != rel_free_energy.shape[0]:
        raise ValueError(f'{len(model_names)} model names for {rel_free_energy.shape[0]} models')

    col_r = plt.get_cmap(cmap)(np.linspace(0, 1, num=rel_free_energy.shape[0]))
    positions = np.arange(rel_free_energy.shape[0])
    bars = axis.bar(positions, rel_free_energy, color=col_r)

    if show_probs:
        probs = softmax(rel_free_energy)
        for pos, f_val, prob in zip(positions, rel_free_energy, probs):
            axis.text(pos, f_val, f'{prob:.2f}', ha='center', va='bottom')

    axis.set_xticks(positions)
    axis.set_xticklabels(model_names)
    axis.set_ylabel(r'$\Delta$F')
    return bars

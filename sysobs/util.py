"""
Utility functions for SPM sessions, logging, file management and MATLAB-compatible numerics.

This module gathers the small helpers shared by the simulation, inversion and model-reduction
modules of sysobs. Most of them exist to keep Python results aligned with analyses originally
written against MATLAB/SPM.

Core functionalities
--------------------
- **SPM interfacing**
  - Context-managed lifecycle for standalone SPM instances (`spm_context`).

- **Logging**
  - Console and file logging with a shared format (`setup_logging`).

- **File and directory utilities**
  - Recursive file retrieval with substring filtering (`get_files`, `check_many`).
  - Directory creation with automatic parent handling (`make_directory`).

- **Numerical utilities**
  - MATLAB-style rounding, half away from zero (`matlab_round`).

Notes
-----
- `spm_standalone` (the DANC SPM Python interface) is installed outside of pip and is only
  imported when a new SPM session has to be started.
"""

import logging
import os
from pathlib import Path
from contextlib import contextmanager

import numpy as np

LOG_FORMAT = '%(asctime)s - %(message)s'


@contextmanager
def spm_context(spm=None, n_jobs=4):
    """
    Context manager for safe initialization and termination of standalone SPM sessions.

    Parameters
    ----------
    spm : spm_standalone, optional
        Existing SPM standalone instance. If None, a new instance is launched and automatically
        terminated upon context exit (default: None).
    n_jobs : int, optional
        Number of MATLAB parallel workers to initialize via `parpool`. Default is 4.

    Yields
    ------
    spm : spm_standalone
        Active standalone SPM instance usable within the context.

    Notes
    -----
    - If an existing `spm` instance is provided, it is reused and not terminated at the end of the
      context.
    - Failures to start or close `parpool` are ignored on the MATLAB side.
    """

    close_spm = False
    if spm is None:
        import spm_standalone  # pylint: disable=import-outside-toplevel,import-error

        spm = spm_standalone.initialize()
        spm.spm_standalone(
            "eval",
            f"""
            try
                parpool({n_jobs});
            catch ME
            end
            """,
            nargout=0
        )
        close_spm = True
    try:
        yield spm
    finally:
        if close_spm:
            spm.spm_standalone(
                "eval",
                "delete(gcp('nocreate'));",
                nargout=0
            )
            spm.terminate()
            del spm


def setup_logging(log_file=None, level=logging.INFO):
    """
    Route log records to the console and, optionally, to a log file.

    Parameters
    ----------
    log_file : str or pathlib.Path, optional
        Path of a log file to append to. If None, only console logging is configured.
    level : int, optional
        Logging level applied to the root logger and handlers (default: logging.INFO).

    Returns
    -------
    logger : logging.Logger
        The configured root logger.
    """

    logger = logging.getLogger()
    logger.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    return logger


def check_many(multiple, target, func=None):
    """
    Evaluate whether multiple substrings occur within a target string.

    Parameters
    ----------
    multiple : list of str
        Substrings to search for within the target string.
    target : str
        String in which to search for the specified substrings.
    func : {'all', 'any'}
        Search mode: `'all'` returns True only if all substrings are found, `'any'` returns True
        if at least one substring is found.

    Returns
    -------
    bool
        True if the condition specified by `func` is satisfied; False otherwise.

    Raises
    ------
    ValueError
        If `func` is not `'all'` or `'any'`.
    """

    func_dict = {
        "all": all, "any": any
    }
    if func in func_dict:
        use_func = func_dict[func]
    else:
        raise ValueError("pick function 'all' or 'any'")
    return use_func([i in target for i in multiple])


def get_files(target_path, suffix, strings=(""), prefix=None, check="all", depth="all"):
    """
    Retrieve files from a directory matching a suffix, a prefix and substrings.

    Parameters
    ----------
    target_path : str or pathlib.Path
        Root directory in which to search for files.
    suffix : str
        File extension to match, in the form '*.ext' (e.g., '*.mat').
    strings : list of str, optional
        Substrings to be matched within each filename. Default is an empty string.
    prefix : str, optional
        Restrict results to filenames beginning with this prefix. Default is None.
    check : {'all', 'any'}, optional
        Substring matching mode passed to `check_many`. Default is `'all'`.
    depth : {'all', 'one'}, optional
        `'all'` searches recursively, `'one'` only the top-level directory. Default is `'all'`.

    Returns
    -------
    files : list of pathlib.Path
        Paths sorted by file name.
    """

    path = Path(target_path)
    files = []
    if depth == "all":
        files = [file for file in path.rglob(suffix)
                 if file.is_file() and file.suffix == suffix[1:] and
                 check_many(strings, file.name, check)]
    elif depth == "one":
        files = [file for file in path.iterdir()
                 if file.is_file() and file.suffix == suffix[1:] and
                 check_many(strings, file.name, check)]

    if isinstance(prefix, str):
        files = [file for file in files if file.name.startswith(prefix)]
    files.sort(key=lambda x: x.name)
    return files


def make_directory(root_path, extended_dir):
    """
    Create a directory (and all necessary parent directories) within a specified root path.

    Parameters
    ----------
    root_path : str or pathlib.Path
        The root directory in which to create the new directory or directories.
    extended_dir : str or list of str
        Subdirectory (or sequence of nested subdirectories) to be created within `root_path`.

    Returns
    -------
    root_path : pathlib.Path
        Path object representing the created directory.
    """

    root_path = Path(root_path)
    if isinstance(extended_dir, list):
        root_path = root_path.joinpath(*extended_dir)
    else:
        root_path = root_path.joinpath(extended_dir)

    root_path.mkdir(parents=True, exist_ok=True)
    return root_path


def matlab_round(values):
    """
    Round to the nearest integer with halves rounded away from zero, as MATLAB's `round` does.

    NumPy rounds halves to the nearest even integer, which shifts sample indices computed from
    times or evenly spaced grids (e.g. 500.5 -> 500 instead of 501).

    Parameters
    ----------
    values : array_like
        Values to round.

    Returns
    -------
    rounded : np.ndarray
        Rounded values as integers (int64).
    """

    values = np.asarray(values, dtype=float)
    return (np.sign(values) * np.floor(np.abs(values) + 0.5)).astype(np.int64)


def results_dir_from_env(default=None):
    """
    Results directory configured through the ``SYSOBS_RESULTS_DIR`` environment variable.

    Parameters
    ----------
    default : str, optional
        Returned when the variable is not set (default: None).

    Returns
    -------
    results_dir : str or None
    """

    return os.environ.get("SYSOBS_RESULTS_DIR", default)

"""
Command-line entry point for batch model comparison.

Typical usage:

    $ sysobs-compare results/ --subjects sub-01 sub-02 --noise-levels 4 8 16 --out table.csv

Each stored posterior (``<subject>_prec-<level>.mat``) is reduced against the standard system and
observer hypotheses, and one row per subject and noise level is written with the free energy of
each hypothesis relative to the worst one. Missing posteriors give empty cells.
"""

import argparse
import csv
import logging
import sys

import numpy as np

from sysobs.model import standard_hypotheses
from sysobs.reduce import batch_model_comparison
from sysobs.util import setup_logging, get_files, results_dir_from_env

logger = logging.getLogger(__name__)


def find_subjects(results_dir):
    """Subject identifiers with at least one posterior record in `results_dir`."""
    files = get_files(results_dir, '*.mat', strings=['_prec-'], depth='one')
    return sorted({file.name.split('_prec-')[0] for file in files})


def write_table(fname, subj_ids, noise_levels, rel_free_energy, model_names):
    """Write relative free energies as CSV, one row per subject and noise level."""
    with open(fname, 'w', encoding="utf-8", newline='') as file:
        writer = csv.writer(file)
        writer.writerow(['subj_id', 'log_precision'] + list(model_names))
        for s_idx, subj_id in enumerate(subj_ids):
            for n_idx, log_precision in enumerate(noise_levels):
                row = rel_free_energy[s_idx, n_idx, :]
                writer.writerow([subj_id, f'{log_precision:g}'] +
                                ['' if np.isnan(val) else f'{val:.6f}' for val in row])


def main(argv=None):
    """Parse arguments and run the batch comparison. Returns the process exit code."""
    parser = argparse.ArgumentParser(
        description='Compare system and observer hypotheses over stored posteriors.'
    )
    parser.add_argument('results_dir', nargs='?', default=results_dir_from_env(),
                        help='directory of posterior records (default: $SYSOBS_RESULTS_DIR)')
    parser.add_argument('--subjects', nargs='+', default=None,
                        help='subject identifiers (default: all found in results_dir)')
    parser.add_argument('--noise-levels', nargs='+', type=float, required=True,
                        help='log-precisions of the observation noise')
    parser.add_argument('--out', default='model_comparison.csv', help='output CSV file')
    parser.add_argument('--n-jobs', type=int, default=1, help='number of parallel jobs')
    parser.add_argument('--log-file', default=None, help='optional log file')
    args = parser.parse_args(argv)

    if args.results_dir is None:
        parser.error('results_dir is required when SYSOBS_RESULTS_DIR is not set')

    setup_logging(args.log_file)

    subj_ids = args.subjects if args.subjects is not None else find_subjects(args.results_dir)
    if not subj_ids:
        logger.error('No posterior records found in %s', args.results_dir)
        return 1

    candidates = standard_hypotheses()
    rel_free_energy = batch_model_comparison(args.results_dir, subj_ids, args.noise_levels,
                                             candidates=candidates, n_jobs=args.n_jobs)
    write_table(args.out, subj_ids, args.noise_levels, rel_free_energy,
                [candidate.name for candidate in candidates])
    logger.info('Wrote %s', args.out)
    return 0


if __name__ == '__main__':
    sys.exit(main())

"""
This module contains the unit tests for the `cli` module from the `sysobs` package.
"""

import csv
import logging

import pytest

from sysobs.cli import main, find_subjects
from sysobs.invert import save_posterior, posterior_fname


@pytest.fixture(autouse=True)
def restore_root_handlers():
    """Remove handlers installed by the command line entry point."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()


def test_find_subjects(tmp_path, observer_posterior):
    """Subjects are identified from record names."""
    save_posterior(posterior_fname(tmp_path, 'sub-02', 8), observer_posterior)
    save_posterior(posterior_fname(tmp_path, 'sub-01', 8), observer_posterior)
    save_posterior(posterior_fname(tmp_path, 'sub-01', 16), observer_posterior)
    (tmp_path / 'notes.mat').touch()
    assert find_subjects(tmp_path) == ['sub-01', 'sub-02']


def test_main(tmp_path, observer_posterior):
    """The table has one row per subject and noise level, with empty cells for missing records."""
    save_posterior(posterior_fname(tmp_path, 'sub-01', 8), observer_posterior)
    save_posterior(posterior_fname(tmp_path, 'sub-01', 16), observer_posterior)
    save_posterior(posterior_fname(tmp_path, 'sub-02', 8), observer_posterior)
    out_fname = tmp_path / 'table.csv'

    assert main([str(tmp_path), '--noise-levels', '8', '16', '--out', str(out_fname)]) == 0

    with open(out_fname, 'r', encoding='utf-8', newline='') as file:
        rows = list(csv.reader(file))
    assert rows[0] == ['subj_id', 'log_precision', 'full', 'system', 'observer', 'null']
    assert [row[:2] for row in rows[1:]] == [['sub-01', '8'], ['sub-01', '16'],
                                            ['sub-02', '8'], ['sub-02', '16']]
    assert rows[4][2:] == ['', '', '', '']
    assert float(rows[1][4]) > float(rows[1][2])
    assert min(float(val) for val in rows[1][2:]) == 0


def test_main_no_records(tmp_path):
    """An empty results directory is reported as an error."""
    assert main([str(tmp_path), '--noise-levels', '8',
                 '--out', str(tmp_path / 'table.csv')]) == 1

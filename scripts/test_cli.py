"""
Tests for the GGompertz/NBD model CLI interface.

The commands run in-process on small synthetic customer bases.
"""

import sys
from pathlib import Path

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent))

from run_model import create_parser, main, parse_reg_lambdas  # noqa: E402


@pytest.fixture
def customers_csv(tmp_path):
    path = tmp_path / "customers.csv"
    assert main(['simulate', str(path), '--n-customers', '60', '--seed', '3', '--T-cal', '30']) == 0
    return path


def test_help_commands(capsys):
    for command in ([], ['simulate'], ['train'], ['predict']):
        with pytest.raises(SystemExit) as exc:
            create_parser().parse_args(command + ['--help'])
        assert exc.value.code == 0


def test_invalid_arguments_are_rejected():
    parser = create_parser()

    with pytest.raises(SystemExit):
        parser.parse_args(['invalid-command'])
    with pytest.raises(SystemExit):
        parser.parse_args(['train'])
    with pytest.raises(SystemExit):
        parser.parse_args(['predict'])


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_parse_reg_lambdas():
    assert parse_reg_lambdas(None) is None
    assert parse_reg_lambdas([1.0, 2.0]) == {'life': 1.0, 'trans': 2.0}


def test_simulate(customers_csv):
    customers = pd.read_csv(customers_csv)

    assert list(customers.columns) == ['Id', 'x', 't_x', 'T_cal']
    assert len(customers) == 60


def test_train_and_predict(customers_csv, tmp_path, capsys):
    output_dir = tmp_path / "models"

    assert main(['train', str(customers_csv), '--id-column', 'Id', '--output-dir', str(output_dir)]) == 0
    assert "LL =" in capsys.readouterr().out

    model_file = next(output_dir.glob("ggomnbd_model_*.pkl"))
    predictions_file = tmp_path / "predictions.csv"
    assert main(['predict', '--model-path', str(model_file), '--periods', '10',
                 '--output', str(predictions_file)]) == 0

    predictions = pd.read_csv(predictions_file, index_col='Id')
    assert len(predictions) == 60
    assert {'PAlive', 'CET', 'DERT'} <= set(predictions.columns)


def test_train_missing_file_fails(tmp_path, capsys):
    assert main(['train', str(tmp_path / "missing.csv")]) == 1
    assert "Execution failed" in capsys.readouterr().err


def test_train_rejects_unknown_covariate(customers_csv, capsys):
    assert main(['train', str(customers_csv), '--cov-life', 'income']) == 1
    assert "Missing required columns" in capsys.readouterr().err

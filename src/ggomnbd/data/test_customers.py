"""
Tests for the customer summary statistics container.
"""

import numpy as np
import pandas as pd
import pytest

from ggomnbd.errors import CustomerDataError
from ggomnbd.data import REQUIRED_COLUMNS, CustomerData


@pytest.fixture
def frame():
    return pd.DataFrame({
        'Id': ['a', 'b', 'c'],
        'x': [0, 2, 5],
        't_x': [0.0, 3.5, 9.0],
        'T_cal': [10.0, 10.0, 12.0],
        'gender': [0.0, 1.0, 1.0],
        'age': [-0.5, 0.3, 1.2],
    })


def test_from_dataframe(frame):
    data = CustomerData.from_dataframe(frame, names_cov_life=['gender'], names_cov_trans=['gender', 'age'],
                                       id_column='Id')

    assert data.n_customers == len(data) == 3
    assert list(data.ids) == ['a', 'b', 'c']
    assert data.names_cov_life == ['gender']
    assert data.names_cov_trans == ['gender', 'age']
    assert data.has_covariates
    np.testing.assert_array_equal(data.x, [0.0, 2.0, 5.0])


def test_default_ids_and_no_covariates(frame):
    data = CustomerData.from_dataframe(frame)

    assert list(data.ids) == [0, 1, 2]
    assert not data.has_covariates
    assert data.cov_life.shape == (3, 0)


def test_missing_columns(frame):
    with pytest.raises(CustomerDataError, match="Missing required columns"):
        CustomerData.from_dataframe(frame.drop(columns=['t_x']))
    with pytest.raises(CustomerDataError, match="income"):
        CustomerData.from_dataframe(frame, names_cov_trans=['income'])


def test_to_frame(frame):
    data = CustomerData.from_dataframe(frame, names_cov_life=['gender'], names_cov_trans=['age'], id_column='Id')

    result = data.to_frame()

    assert list(result.columns) == REQUIRED_COLUMNS + ['life.gender', 'trans.age']
    assert result.loc['c', 'trans.age'] == pytest.approx(1.2)


def test_summary(frame):
    summary = CustomerData.from_dataframe(frame).summary()

    assert summary['n_customers'] == 3
    assert summary['repeat_rate'] == pytest.approx(2 / 3)
    assert summary['frequency']['max'] == 5


@pytest.mark.parametrize("x,t_x,T_cal", [
    ([1, -1], [1.0, 0.0], [2.0, 2.0]),
    ([1.5, 1], [1.0, 1.0], [2.0, 2.0]),
    ([1, 1], [-1.0, 1.0], [2.0, 2.0]),
    ([1, 1], [3.0, 1.0], [2.0, 2.0]),
    ([1, 1], [np.nan, 1.0], [2.0, 2.0]),
    ([1, 1], [1.0, 1.0], [2.0, np.inf]),
    ([1, 1], [1.0], [2.0, 2.0]),
])
def test_invalid_summary_statistics(x, t_x, T_cal):
    with pytest.raises(CustomerDataError):
        CustomerData(x, t_x, T_cal)


def test_empty_data():
    with pytest.raises(CustomerDataError, match="empty"):
        CustomerData([], [], [])


def test_invalid_covariates():
    with pytest.raises(CustomerDataError, match="rows"):
        CustomerData([1, 2], [1.0, 1.0], [2.0, 2.0], cov_life=pd.DataFrame({'a': [1.0]}))
    with pytest.raises(CustomerDataError, match="numeric"):
        CustomerData([1, 2], [1.0, 1.0], [2.0, 2.0], cov_trans=pd.DataFrame({'a': ['x', 'y']}))
    with pytest.raises(CustomerDataError, match="non-finite"):
        CustomerData([1, 2], [1.0, 1.0], [2.0, 2.0], cov_trans=pd.DataFrame({'a': [1.0, np.nan]}))


def test_wrong_number_of_ids():
    with pytest.raises(CustomerDataError):
        CustomerData([1, 2], [1.0, 1.0], [2.0, 2.0], ids=['a'])


def test_customer_data_error_is_value_error():
    with pytest.raises(ValueError):
        CustomerData([-1], [0.0], [1.0])

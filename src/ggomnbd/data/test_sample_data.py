"""
Tests for the synthetic customer generator.
"""

import numpy as np
import pandas as pd
import pytest

from ggomnbd.data import CustomerData, SampleDataGenerator, create_sample_customers


@pytest.fixture
def customers():
    return create_sample_customers(n_customers=500, random_seed=3)


def test_columns_and_shape(customers):
    assert list(customers.columns) == ['Id', 'x', 't_x', 'T_cal']
    assert len(customers) == 500
    assert customers['Id'].is_unique


def test_summary_statistics_are_consistent(customers):
    assert (customers['x'] >= 0).all()
    assert (customers['t_x'] >= 0).all()
    assert (customers['t_x'] <= customers['T_cal']).all()
    assert (customers.loc[customers['x'] == 0, 't_x'] == 0).all()
    assert (customers.loc[customers['x'] > 0, 't_x'] > 0).all()


def test_output_is_valid_customer_data(customers):
    data = CustomerData.from_dataframe(customers, id_column='Id')

    assert data.n_customers == 500


def test_reproducible_with_seed():
    first = create_sample_customers(n_customers=50, random_seed=7)
    second = create_sample_customers(n_customers=50, random_seed=7)
    other = create_sample_customers(n_customers=50, random_seed=8)

    pd.testing.assert_frame_equal(first, second)
    assert not first.equals(other)


def test_covariate_columns():
    customers = create_sample_customers(
        n_customers=100, cov_life_coeffs={'gender': 0.5}, cov_trans_coeffs={'gender': 0.5, 'age': 1.0}
    )

    assert list(customers.columns) == ['Id', 'x', 't_x', 'T_cal', 'gender', 'age']
    assert customers[['gender', 'age']].notna().all().all()


def test_per_customer_calibration_length():
    T_cal = np.linspace(10.0, 30.0, 20)

    customers = create_sample_customers(n_customers=20, T_cal=T_cal)

    np.testing.assert_array_equal(customers['T_cal'].to_numpy(), T_cal)


def test_higher_purchase_rate_gives_more_transactions():
    generator = SampleDataGenerator(random_seed=1)
    slow = generator.generate_customers(n_customers=2000, r=1.0, alpha=20.0)
    fast = generator.generate_customers(n_customers=2000, r=1.0, alpha=2.0)

    assert fast['x'].mean() > slow['x'].mean()


@pytest.mark.parametrize("kwargs", [
    {'n_customers': 0},
    {'b': 0.0},
    {'alpha': -1.0},
    {'T_cal': 0.0},
])
def test_invalid_arguments(kwargs):
    with pytest.raises(ValueError):
        SampleDataGenerator().generate_customers(**kwargs)


def test_generate_summary(customers):
    summary = SampleDataGenerator().generate_summary(customers)

    assert summary['n_customers'] == 500
    assert 0.0 <= summary['repeat_rate'] <= 1.0

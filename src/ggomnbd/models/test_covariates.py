"""
Tests for the static covariate transform.
"""

import numpy as np
import pytest

from ggomnbd.errors import DimensionMismatch
from ggomnbd.models.covariates import build_heterogeneity, split_covariate_params


def test_no_covariates_give_constant_vectors():
    alpha_i, beta_i = build_heterogeneity(2.0, 3.0, n_customers=4)

    np.testing.assert_array_equal(alpha_i, np.full(4, 2.0))
    np.testing.assert_array_equal(beta_i, np.full(4, 3.0))


def test_linear_combination():
    cov_trans = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
    cov_life = np.array([[2.0], [-1.0], [0.0]])

    alpha_i, beta_i = build_heterogeneity(
        1.5, 0.5,
        trans_coeffs=[0.2, -0.3], life_coeffs=[0.1],
        trans_covariates=cov_trans, life_covariates=cov_life
    )

    np.testing.assert_allclose(alpha_i, 1.5 * np.exp(-np.array([0.2, -0.3, -0.1])))
    np.testing.assert_allclose(beta_i, 0.5 * np.exp(-np.array([0.2, -0.1, 0.0])))


def test_one_dimensional_covariate_is_a_column():
    alpha_i, _ = build_heterogeneity(1.0, 1.0, trans_coeffs=[1.0], trans_covariates=[0.0, 1.0])

    np.testing.assert_allclose(alpha_i, [1.0, np.exp(-1.0)])


def test_coefficient_count_mismatch():
    with pytest.raises(DimensionMismatch):
        build_heterogeneity(1.0, 1.0, trans_coeffs=[0.1], trans_covariates=np.ones((3, 2)))


def test_row_count_mismatch():
    with pytest.raises(DimensionMismatch):
        build_heterogeneity(
            1.0, 1.0,
            trans_coeffs=[0.1], life_coeffs=[0.1],
            trans_covariates=np.ones((3, 1)), life_covariates=np.ones((4, 1))
        )


def test_customer_count_required_without_matrices():
    with pytest.raises(DimensionMismatch):
        build_heterogeneity(1.0, 1.0)


def test_split_covariate_params():
    params = np.arange(9, dtype=float)

    log_model, life, trans = split_covariate_params(params, n_life=3, n_trans=1)

    np.testing.assert_array_equal(log_model, [0, 1, 2, 3, 4])
    np.testing.assert_array_equal(life, [5, 6, 7])
    np.testing.assert_array_equal(trans, [8])


def test_split_covariate_params_wrong_length():
    with pytest.raises(DimensionMismatch):
        split_covariate_params(np.zeros(7), n_life=1, n_trans=2)

"""
Tests for the parameter transformations and the correlation surrogate.
"""

import numpy as np
import pandas as pd
import pytest

from ggomnbd.errors import InvalidStartParameter
from ggomnbd.models.transforms import (
    MODEL_PARAM_NAMES,
    NAME_COR_PARAM_M,
    PREFIXED_MODEL_PARAM_NAMES,
    backtransform_params,
    cor_to_m,
    dcor_dm,
    m_to_cor,
    mixing_constants,
    param_m_bounds,
    transform_start_params,
    vcov_jacobian,
)

START = {'r': 0.5, 'alpha': 12.0, 'b': 0.03, 's': 1.7, 'beta': 4.0}


def test_log_exp_roundtrip():
    prefixed = transform_start_params(START)

    assert list(prefixed.index) == list(PREFIXED_MODEL_PARAM_NAMES)
    natural = backtransform_params(prefixed)
    assert list(natural.index) == list(MODEL_PARAM_NAMES)
    np.testing.assert_allclose(natural.to_numpy(), [START[name] for name in MODEL_PARAM_NAMES], rtol=1e-14)


@pytest.mark.parametrize("value", [0.0, -1.0, np.nan, np.inf])
def test_invalid_start_values(value):
    start = dict(START, b=value)
    with pytest.raises(InvalidStartParameter):
        transform_start_params(start)


def test_missing_and_unknown_start_names():
    with pytest.raises(InvalidStartParameter):
        transform_start_params({k: v for k, v in START.items() if k != 'beta'})
    with pytest.raises(InvalidStartParameter):
        transform_start_params(dict(START, gamma=1.0))


def test_invalid_start_parameter_is_value_error():
    with pytest.raises(ValueError):
        transform_start_params(dict(START, r=-2.0))


def test_correlation_roundtrip():
    m = cor_to_m(0.3, START['r'], START['alpha'], START['s'], START['beta'])

    assert m_to_cor(m, START['r'], START['alpha'], START['s'], START['beta']) == pytest.approx(0.3)


@pytest.mark.parametrize("cor", [-1.0, 1.0, 1.5, np.nan])
def test_correlation_outside_open_interval(cor):
    with pytest.raises(InvalidStartParameter):
        cor_to_m(cor, 1.0, 1.0, 1.0, 1.0)


def test_m_to_cor_is_clipped():
    cor = m_to_cor(1e12, 1.0, 1.0, 1.0, 1.0)

    assert -1.0 < cor < 1.0


def test_mixing_constants():
    A, B = mixing_constants(2.0, 1.0, 1.0, 3.0)

    assert A == pytest.approx(0.25)
    assert B == pytest.approx(0.75)


def test_param_m_bounds_scalar():
    # A = B = 1/2: density stays non-negative for m in [-4, 4]
    lower, upper = param_m_bounds(1.0, 1.0, 1.0, 1.0)

    assert lower == pytest.approx(-4.0)
    assert upper == pytest.approx(4.0)


def test_param_m_bounds_vector_is_intersection():
    alpha_i = np.array([1.0, 2.0])
    beta_i = np.array([1.0, 1.0])

    lower, upper = param_m_bounds(1.0, alpha_i, 1.0, beta_i)
    per_customer = [param_m_bounds(1.0, a, 1.0, b) for a, b in zip(alpha_i, beta_i)]

    assert lower == pytest.approx(max(lo for lo, _ in per_customer))
    assert upper == pytest.approx(min(up for _, up in per_customer))
    assert lower < 0.0 < upper


def test_vcov_jacobian_diagonal():
    prefixed = pd.concat([
        transform_start_params(START),
        pd.Series({'life.gender': 0.4, NAME_COR_PARAM_M: 0.2}),
    ])

    jacobian = vcov_jacobian(prefixed, name_cor_param_m=NAME_COR_PARAM_M)

    expected = [START[name] for name in MODEL_PARAM_NAMES] + [
        1.0, dcor_dm(START['r'], START['alpha'], START['s'], START['beta'])
    ]
    np.testing.assert_allclose(np.diag(jacobian.to_numpy()), expected, rtol=1e-12)
    assert np.count_nonzero(jacobian.to_numpy() - np.diag(np.diag(jacobian.to_numpy()))) == 0
    assert list(jacobian.index) == list(prefixed.index)

"""
Tests for the optimization driver.
"""

import numpy as np
import pandas as pd
import pytest
from scipy.optimize import OptimizeResult

from ggomnbd.errors import EstimationFailureWarning
from ggomnbd.models import estimation
from ggomnbd.models.estimation import (
    OptimizerConfig,
    estimate,
    no_check_gradient,
)

OPTIMUM = np.array([1.0, -2.0])


def quadratic(params, **options):
    """(a - 1)^2 + 2 (b + 2)^2 + (a - 1)(b + 2)"""
    d = params.to_numpy() - OPTIMUM
    return float(d[0] ** 2 + 2.0 * d[1] ** 2 + d[0] * d[1])


@pytest.fixture
def start():
    return pd.Series({'a': 0.0, 'b': 0.0})


def test_estimate_finds_minimum(start):
    result = estimate(quadratic, start, OptimizerConfig())

    np.testing.assert_allclose(result.params.to_numpy(), OPTIMUM, atol=1e-4)
    assert result.converged
    assert result.reliable
    assert result.objective_value == pytest.approx(0.0, abs=1e-6)
    assert result.log_likelihood == -result.objective_value
    assert list(result.params.index) == ['a', 'b']


def test_hessian_is_symmetric_and_correct(start):
    result = estimate(quadratic, start, OptimizerConfig())

    hessian = result.hessian.to_numpy()
    np.testing.assert_array_equal(hessian, hessian.T)
    np.testing.assert_allclose(hessian, [[2.0, 1.0], [1.0, 4.0]], atol=1e-4)
    assert list(result.hessian.index) == ['a', 'b']


def test_nelder_mead(start):
    result = estimate(quadratic, start, OptimizerConfig(method='Nelder-Mead', options={'xatol': 1e-8, 'fatol': 1e-10}))

    np.testing.assert_allclose(result.params.to_numpy(), OPTIMUM, atol=1e-3)
    assert result.method == 'Nelder-Mead'


def test_hessian_can_be_skipped(start):
    result = estimate(quadratic, start, OptimizerConfig(hessian=False))

    assert result.hessian.isna().all().all()
    assert result.reliable


def test_non_finite_estimate_warns(start, monkeypatch):
    def failing_minimize(fn, x0, **kwargs):
        return OptimizeResult(x=np.array([np.nan, 1.0]), fun=np.nan, success=False,
                              message='failure', nit=3, nfev=10)

    monkeypatch.setattr(estimation, 'minimize', failing_minimize)

    with pytest.warns(EstimationFailureWarning, match="NA coefs"):
        result = estimate(quadratic, start, OptimizerConfig())

    assert not result.reliable
    assert not result.converged
    assert result.hessian.shape == (2, 2)
    assert result.hessian.isna().all().all()


def test_hessian_failure_warns(start, monkeypatch):
    def failing_hessian(x, f, **kwargs):
        raise ValueError("no curvature")

    monkeypatch.setattr(estimation, 'approx_hess3', failing_hessian)

    with pytest.warns(EstimationFailureWarning, match="Hessian"):
        result = estimate(quadratic, start, OptimizerConfig())

    assert not result.reliable
    assert result.hessian.isna().all().all()
    np.testing.assert_allclose(result.params.to_numpy(), OPTIMUM, atol=1e-4)


def test_correlation_supplies_gradient_to_gradient_methods(start, monkeypatch):
    captured = {}
    real_minimize = estimation.minimize

    def recording_minimize(fn, x0, method=None, jac=None, options=None):
        captured[method] = jac
        return real_minimize(fn, x0, method=method, jac=jac, options=options)

    monkeypatch.setattr(estimation, 'minimize', recording_minimize)

    estimate(quadratic, start, OptimizerConfig(method='L-BFGS-B'), use_cor=True)
    estimate(quadratic, start, OptimizerConfig(method='Nelder-Mead'), use_cor=True)
    estimate(quadratic, start, OptimizerConfig(method='BFGS'), use_cor=False)

    assert callable(captured['L-BFGS-B'])
    assert captured['Nelder-Mead'] is None
    assert captured['BFGS'] is None


def test_default_method_with_correlation(start):
    result = estimate(quadratic, start, use_cor=True)

    assert result.method == 'Nelder-Mead'
    assert result.used_correlation


def test_no_check_gradient_disables_bounds():
    seen = []

    def fn(x, **options):
        seen.append(options)
        return float(np.sum((x - OPTIMUM) ** 2))

    grad = no_check_gradient(fn)(np.zeros(2))

    np.testing.assert_allclose(grad, -2.0 * OPTIMUM, atol=1e-5)
    assert all(options == {'check_param_m_bounds': False} for options in seen)


def test_optimizer_config_from_estimation_config():
    class Estimation:
        optimizer_method = 'BFGS'
        optimizer_method_cor = 'Powell'
        optimizer_maxiter = 77

    assert OptimizerConfig.from_config(Estimation()) == OptimizerConfig(method='BFGS', maxiter=77)
    assert OptimizerConfig.from_config(Estimation(), use_cor=True).method == 'Powell'

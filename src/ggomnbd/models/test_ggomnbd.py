"""
Tests for the fitted GGompertz/NBD model: estimation, inference,
predictions and persistence.
"""

import numpy as np
import pandas as pd
import pytest

from ggomnbd.data import CustomerData, SampleDataGenerator
from ggomnbd.errors import CustomerDataError, GGompertzNBDModelError, InvalidStartParameter
from ggomnbd.models import (
    GGompertzNBDModel,
    InterlayerConfig,
    LikelihoodTarget,
    NoCovariateVariant,
    OptimizerConfig,
    StaticCovariateVariant,
    build_interlayer_pipeline,
    create_ggomnbd_model,
    fit_ggomnbd_model,
    likelihood_sum_nocov,
)
from ggomnbd.models.transforms import NAME_COR, NAME_COR_PARAM_M


@pytest.fixture(scope="module")
def cbs():
    generator = SampleDataGenerator(random_seed=11)
    return generator.generate_customers(n_customers=150, r=0.6, alpha=8.0, b=0.05, s=0.8, beta=4.0, T_cal=40.0)


@pytest.fixture(scope="module")
def cbs_cov():
    generator = SampleDataGenerator(random_seed=5)
    return generator.generate_customers(
        n_customers=80, T_cal=30.0,
        cov_life_coeffs={'gender': 0.3}, cov_trans_coeffs={'gender': 0.3, 'age': -0.2},
    )


@pytest.fixture(scope="module")
def fitted(cbs):
    return fit_ggomnbd_model(cbs)


def test_fit_improves_on_start_values(fitted, cbs):
    start_value = likelihood_sum_nocov(np.zeros(5), cbs['x'], cbs['t_x'], cbs['T_cal'])

    assert fitted.is_fitted
    assert fitted.result.objective_value <= start_value
    assert np.isfinite(fitted.log_likelihood)
    assert fitted.n_customers == len(cbs)


def test_coefficients_on_natural_scale(fitted):
    coef = fitted.coef()

    assert list(coef.index) == ['r', 'alpha', 'b', 's', 'beta']
    assert (coef > 0).all()
    np.testing.assert_allclose(coef.to_numpy(), np.exp(fitted.result.params.to_numpy()))


def test_hessian_symmetric(fitted):
    hessian = fitted.result.hessian.to_numpy()

    np.testing.assert_array_equal(hessian, hessian.T)
    assert fitted.get_model_diagnostics()['hessian']['symmetric']


def test_vcov_and_summary(fitted):
    vcov = fitted.vcov()
    summary = fitted.summary()

    assert vcov.shape == (5, 5)
    assert list(vcov.index) == list(fitted.coef().index)
    assert list(summary.columns) == ['Estimate', 'Std. Error', 'z-val', 'Pr(>|z|)', '2.5 %', '97.5 %']
    valid = summary['Std. Error'].notna()
    assert (summary.loc[valid, '2.5 %'] <= summary.loc[valid, 'Estimate']).all()


def test_predict(fitted, cbs):
    predictions = fitted.predict(periods=10)

    assert list(predictions.columns) == ['x', 't_x', 'T_cal', 'period_length', 'PAlive', 'CET', 'DERT']
    assert len(predictions) == len(cbs)
    assert predictions['PAlive'].between(0.0, 1.0).all()
    assert (predictions['CET'] >= 0.0).all()
    assert (predictions['DERT'] == 0.0).all()


def test_palive_is_one_for_purchase_at_end_of_calibration(fitted):
    data = pd.DataFrame({'x': [3, 0], 't_x': [20.0, 0.0], 'T_cal': [20.0, 20.0]})

    palive = fitted.predict_probability_alive(data)

    assert palive.iloc[0] == pytest.approx(1.0)
    assert palive.iloc[1] < 1.0


def test_cet_zero_horizon(fitted):
    cet = fitted.predict_expected_transactions(0.0)

    assert (cet == 0.0).all()


def test_expectation_increases_with_time(fitted):
    short = fitted.expectation(5.0)
    long = fitted.expectation(25.0)

    assert (long > short).all()
    assert (short > 0).all()


def test_save_and_load(fitted, tmp_path):
    path = tmp_path / "models" / "ggomnbd.pkl"
    fitted.save_model(path)

    loaded = GGompertzNBDModel.load_model(path)

    pd.testing.assert_series_equal(loaded.coef(), fitted.coef())
    assert loaded.n_customers == fitted.n_customers


def test_load_missing_file(tmp_path):
    with pytest.raises(GGompertzNBDModelError):
        GGompertzNBDModel.load_model(tmp_path / "missing.pkl")


def test_unfitted_model_raises():
    model = create_ggomnbd_model()

    with pytest.raises(GGompertzNBDModelError):
        model.coef()
    with pytest.raises(GGompertzNBDModelError):
        model.predict()
    assert isinstance(model.variant, NoCovariateVariant)


def test_invalid_start_parameters(cbs):
    model = create_ggomnbd_model()

    with pytest.raises(InvalidStartParameter):
        model.fit(cbs, start_params_model={'r': 1.0, 'alpha': 1.0, 'b': 0.0, 's': 1.0, 'beta': 1.0})
    with pytest.raises(InvalidStartParameter):
        model.fit(cbs, use_cor=True, start_param_cor=1.2)


def test_model_without_covariates_rejects_covariate_arguments(cbs):
    model = create_ggomnbd_model()

    with pytest.raises(ValueError):
        model.fit(cbs, reg_lambdas={'life': 1.0, 'trans': 1.0})
    with pytest.raises(ValueError):
        model.fit(cbs, names_constr=['gender'])
    with pytest.raises(ValueError):
        model.fit(cbs, start_param_cor=0.1)


def test_invalid_customer_data():
    data = pd.DataFrame({'x': [1, 2], 't_x': [5.0, 12.0], 'T_cal': [10.0, 10.0]})

    with pytest.raises(CustomerDataError):
        create_ggomnbd_model().fit(data)


def test_zero_correlation_equals_uncorrelated_objective(cbs):
    data = CustomerData.from_dataframe(cbs)
    target = LikelihoodTarget(NoCovariateVariant(), data)
    params = pd.Series(np.log([0.6, 8.0, 0.05, 0.8, 4.0]), index=['log.r', 'log.alpha', 'log.b', 'log.s', 'log.beta'])

    objective = build_interlayer_pipeline(target, InterlayerConfig(use_cor=True))
    with_m = pd.concat([params, pd.Series({NAME_COR_PARAM_M: 0.0})])

    assert objective(with_m) == pytest.approx(target(params), rel=1e-12)


def test_fit_with_correlation(cbs):
    model = create_ggomnbd_model()
    model.fit(cbs, use_cor=True, optimizer=OptimizerConfig(method='Nelder-Mead', maxiter=60))

    coef = model.coef()
    assert coef.index[-1] == NAME_COR
    assert -1.0 < coef[NAME_COR] < 1.0
    assert model.result.used_correlation
    assert model.get_model_diagnostics()['interlayers'] == ['correlation']


def test_static_covariates_with_constraint_and_regularization(cbs_cov):
    model = create_ggomnbd_model(names_cov_life=['gender'], names_cov_trans=['gender', 'age'])
    model.fit(
        cbs_cov,
        names_constr=['gender'],
        start_params_constr={'gender': 0.2},
        reg_lambdas={'life': 0.5, 'trans': 0.5},
        optimizer=OptimizerConfig(maxiter=30, hessian=False),
    )

    coef = model.coef()
    assert isinstance(model.variant, StaticCovariateVariant)
    assert list(coef.index) == ['r', 'alpha', 'b', 's', 'beta', 'trans.age', 'constr.gender']
    assert model.interlayer_config.active_layers() == ['regularization', 'constraints']
    assert model.vcov().isna().all().all()
    assert model.predict(periods=5)['PAlive'].between(0.0, 1.0).all()


def test_static_covariate_argument_checks(cbs_cov):
    model = create_ggomnbd_model(names_cov_life=['gender'], names_cov_trans=['age'])

    with pytest.raises(ValueError):
        model.fit(cbs_cov, names_constr=['gender'])
    with pytest.raises(ValueError):
        model.fit(cbs_cov, reg_lambdas={'life': -1.0, 'trans': 0.0})
    with pytest.raises(ValueError):
        model.fit(cbs_cov, reg_lambdas={'life': 1.0})
    with pytest.raises(InvalidStartParameter):
        model.fit(cbs_cov, start_params_life={'age': 0.1})


def test_missing_covariate_column(cbs):
    model = create_ggomnbd_model(names_cov_life=['gender'], names_cov_trans=[])

    with pytest.raises(CustomerDataError):
        model.fit(cbs)


def test_variant_prediction_interface(fitted):
    params = fitted.result.params
    customers = fitted.training_data

    palive_only = fitted.variant.prediction_metrics(params, customers)
    with_cet = fitted.variant.prediction_metrics(params, customers, periods=10.0)

    assert set(palive_only) == {'PAlive'}
    assert set(with_cet) == {'PAlive', 'CET'}
    np.testing.assert_allclose(with_cet['PAlive'], palive_only['PAlive'])
    np.testing.assert_allclose(with_cet['CET'], fitted.predict_expected_transactions(10.0).to_numpy())
    assert fitted.variant.expectation(params, customers, 5.0).shape == (customers.n_customers,)

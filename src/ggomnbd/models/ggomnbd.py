"""
GGompertz/NBD (Gamma/Gompertz/Negative Binomial Distribution) model.

Maximum-likelihood estimation of the GGompertz/NBD model of Bemmaor and
Glady (2012) from customer summary statistics.

The model assumes:
- While alive, a customer purchases according to a Poisson process with rate λ
- λ varies across customers according to a Gamma(r, alpha) distribution
- Customer lifetimes follow a Gompertz distribution with shape b and scale η
- η varies across customers according to a Gamma(s, beta) distribution

Optional extensions: static covariates for both processes (with L2
regularization and equality constraints) and a correlation between λ and η.
"""

import logging
import pickle
import warnings
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy.stats import norm

from ..config import get_config
from ..data.customers import CustomerData
from ..errors import (
    CustomerDataError,
    EstimationFailureWarning,
    GGompertzNBDError,
    GGompertzNBDModelError,
    InvalidStartParameter,
)
from .estimation import OptimizationResult, OptimizerConfig, estimate
from .interlayers import (
    InterlayerConfig,
    build_interlayer_pipeline,
    constrained_param_name,
    expand_constrained_params,
)
from .quadrature import QuadratureSettings
from .transforms import (
    MODEL_PARAM_NAMES,
    NAME_COR,
    NAME_COR_PARAM_M,
    cor_to_m,
    m_to_cor,
)
from .variants import (
    DEFAULT_START_PARAM_COV,
    LikelihoodTarget,
    StaticCovariateVariant,
    create_variant,
)

logger = logging.getLogger(__name__)

DataInput = Union[CustomerData, pd.DataFrame]


class GGompertzNBDModel:
    """
    GGompertz/NBD model fitted by maximum likelihood.

    Without covariate names this is the standard model; with lifetime and/or
    transaction covariate names the static-covariate variant is used.
    """

    def __init__(
        self,
        names_cov_life: Sequence[str] = (),
        names_cov_trans: Sequence[str] = (),
        id_column: Optional[str] = None,
        quadrature: Optional[QuadratureSettings] = None
    ):
        """
        Initialize the GGompertz/NBD model.

        Args:
            names_cov_life: Covariate columns for the lifetime process
            names_cov_trans: Covariate columns for the transaction process
            id_column: Column holding customer identifiers in input frames
            quadrature: Integration settings (defaults from the configuration)
        """
        self.config = get_config()
        self.variant = create_variant(names_cov_life, names_cov_trans)
        self.id_column = id_column
        self.quadrature = quadrature or QuadratureSettings.from_config(self.config.estimation)

        # Estimation state
        self.result: Optional[OptimizationResult] = None
        self.interlayer_config: Optional[InterlayerConfig] = None
        self.training_data: Optional[CustomerData] = None
        self.names_constr: List[str] = []

        self.model_metadata = {
            'created_at': datetime.now(),
            'trained_at': None,
            'model_version': '1.0.0',
            'name_model': self.variant.name_model,
            'names_cov_life': self.variant.names_cov_life,
            'names_cov_trans': self.variant.names_cov_trans,
            'n_customers': None,
        }

        logger.info(f"Initialized {self.variant.name_model} model")

    @property
    def has_covariates(self) -> bool:
        return isinstance(self.variant, StaticCovariateVariant)

    @property
    def is_fitted(self) -> bool:
        return self.result is not None

    def _require_fitted(self, action: str) -> None:
        if self.result is None:
            raise GGompertzNBDModelError(f"Model must be fitted before {action}")

    def _prepare_data(self, data: DataInput) -> CustomerData:
        """Turn the input into CustomerData holding the model's covariates."""
        if isinstance(data, CustomerData):
            missing = ([name for name in self.variant.names_cov_life if name not in data.names_cov_life]
                       + [name for name in self.variant.names_cov_trans if name not in data.names_cov_trans])
            if missing:
                raise CustomerDataError(f"Customer data lacks covariates: {missing}")
            return data

        if not isinstance(data, pd.DataFrame):
            raise CustomerDataError(f"Expected a DataFrame or CustomerData, got {type(data).__name__}")

        return CustomerData.from_dataframe(
            data,
            names_cov_life=self.variant.names_cov_life,
            names_cov_trans=self.variant.names_cov_trans,
            id_column=self.id_column,
        )

    def _check_input_args(
        self,
        start_params_life: Optional[Mapping[str, float]],
        start_params_trans: Optional[Mapping[str, float]],
        use_cor: bool,
        start_param_cor: Optional[float],
        reg_lambdas: Optional[Mapping[str, float]],
        names_constr: Sequence[str],
        start_params_constr: Optional[Mapping[str, float]]
    ) -> None:
        """Reject argument combinations the chosen variant cannot use."""
        if not use_cor and start_param_cor is not None:
            raise ValueError("start_param_cor is only used together with use_cor=True")

        if not self.has_covariates:
            given = {
                'start_params_life': start_params_life,
                'start_params_trans': start_params_trans,
                'reg_lambdas': reg_lambdas,
                'names_constr': list(names_constr) or None,
                'start_params_constr': start_params_constr,
            }
            unused = [name for name, value in given.items() if value is not None]
            if unused:
                raise ValueError(
                    f"The model without covariates does not use {unused}; "
                    f"specify covariate names to fit the static covariate model"
                )
            return

        if reg_lambdas is not None:
            if set(reg_lambdas) != {'life', 'trans'}:
                raise ValueError("reg_lambdas needs exactly the two entries 'life' and 'trans'")
            for process, value in reg_lambdas.items():
                if not np.isfinite(value) or value < 0:
                    raise ValueError(f"Regularization lambda for {process} must be >= 0, got {value}")

        names_constr = list(names_constr)
        if len(set(names_constr)) != len(names_constr):
            raise ValueError(f"Duplicate constrained covariates: {names_constr}")
        not_in_both = [name for name in names_constr
                       if name not in self.variant.names_cov_life or name not in self.variant.names_cov_trans]
        if not_in_both:
            raise ValueError(f"Constrained covariates must be used in both processes: {not_in_both}")

        if start_params_constr is not None:
            unknown = [name for name in start_params_constr if name not in names_constr]
            if unknown:
                raise InvalidStartParameter(f"Start parameters for {unknown} which are not constrained")

    def _start_params(
        self,
        start_params_model: Optional[Mapping[str, float]],
        start_params_life: Optional[Mapping[str, float]],
        start_params_trans: Optional[Mapping[str, float]],
        use_cor: bool,
        start_param_cor: Optional[float],
        names_constr: Sequence[str],
        start_params_constr: Optional[Mapping[str, float]]
    ) -> pd.Series:
        """Assemble all start values in optimizer space."""
        start = self.variant.transform_start_params(start_params_model)
        parts = [start]

        if self.has_covariates:
            parts.append(self.variant.transform_start_params_cov(start_params_life, start_params_trans, names_constr))
            given = dict(start_params_constr or {})
            constr = pd.Series(
                {constrained_param_name(name): float(given.get(name, DEFAULT_START_PARAM_COV))
                 for name in names_constr},
                dtype=np.float64,
            )
            if not np.all(np.isfinite(constr.to_numpy())):
                raise InvalidStartParameter("Start parameters for constrained covariates must be finite")
            parts.append(constr)

        if use_cor:
            r, alpha, _, s, beta = self.variant.model_params(start)
            m = cor_to_m(0.0 if start_param_cor is None else start_param_cor, r, alpha, s, beta)
            parts.append(pd.Series({NAME_COR_PARAM_M: m}, dtype=np.float64))

        return pd.concat(parts)

    def fit(
        self,
        data: DataInput,
        start_params_model: Optional[Mapping[str, float]] = None,
        start_params_life: Optional[Mapping[str, float]] = None,
        start_params_trans: Optional[Mapping[str, float]] = None,
        use_cor: bool = False,
        start_param_cor: Optional[float] = None,
        reg_lambdas: Optional[Mapping[str, float]] = None,
        names_constr: Sequence[str] = (),
        start_params_constr: Optional[Mapping[str, float]] = None,
        optimizer: Optional[OptimizerConfig] = None
    ) -> 'GGompertzNBDModel':
        """
        Fit the model by maximizing the log-likelihood.

        Args:
            data: Customer data (CustomerData or a frame with x, t_x, T_cal and covariates)
            start_params_model: Natural-scale start values for r, alpha, b, s, beta
            start_params_life: Start values for free lifetime covariates (default 0.1)
            start_params_trans: Start values for free transaction covariates (default 0.1)
            use_cor: Whether to estimate the correlation between purchase and attrition rate
            start_param_cor: Start value of the correlation (default 0)
            reg_lambdas: L2 penalties ``{'life': λ, 'trans': λ}`` on the covariate coefficients
            names_constr: Covariates whose lifetime and transaction coefficients are equal
            start_params_constr: Start values of the constrained coefficients (default 0.1)
            optimizer: Minimizer settings (defaults from the configuration)

        Returns:
            Self for method chaining

        Raises:
            InvalidStartParameter: If start parameters cannot be used
            CustomerDataError: If the data is invalid
            GGompertzNBDModelError: If the optimization itself fails
        """
        logger.info(f"Starting {self.variant.name_model} model fitting")

        names_constr = list(names_constr)
        self._check_input_args(start_params_life, start_params_trans, use_cor, start_param_cor,
                               reg_lambdas, names_constr, start_params_constr)
        customers = self._prepare_data(data)
        start = self._start_params(start_params_model, start_params_life, start_params_trans,
                                   use_cor, start_param_cor, names_constr, start_params_constr)

        interlayer_config = InterlayerConfig(use_cor=use_cor, name_cor_param_m=NAME_COR_PARAM_M)
        if self.has_covariates:
            constr = [constrained_param_name(name) for name in names_constr]
            interlayer_config.use_constr = bool(names_constr)
            interlayer_config.names_constr = names_constr
            interlayer_config.use_reg = reg_lambdas is not None
            interlayer_config.reg_lambda_life = float(reg_lambdas['life']) if reg_lambdas else 0.0
            interlayer_config.reg_lambda_trans = float(reg_lambdas['trans']) if reg_lambdas else 0.0
            interlayer_config.names_life = [
                f"life.{name}" for name in self.variant.names_cov_life if name not in names_constr
            ] + constr
            interlayer_config.names_trans = [
                f"trans.{name}" for name in self.variant.names_cov_trans if name not in names_constr
            ] + constr

        optimizer = optimizer or OptimizerConfig.from_config(self.config.estimation, use_cor=use_cor)
        target = LikelihoodTarget(self.variant, customers, self.quadrature)
        objective = build_interlayer_pipeline(target, interlayer_config)

        try:
            result = estimate(objective, start, optimizer, use_cor=use_cor)
        except GGompertzNBDError:
            raise
        except Exception as e:
            logger.error(f"Error fitting {self.variant.name_model} model: {e}")
            raise GGompertzNBDModelError(f"Model fitting failed: {e}") from e

        self.result = result
        self.interlayer_config = interlayer_config
        self.names_constr = names_constr
        self.training_data = customers
        self.model_metadata['n_customers'] = customers.n_customers
        self.model_metadata['trained_at'] = datetime.now()

        logger.info(
            f"{self.variant.name_model} model fitting completed "
            f"(LL={result.log_likelihood:.4f}, reliable={result.reliable})"
        )
        return self

    @property
    def use_cor(self) -> bool:
        return self.result is not None and self.result.used_correlation

    @property
    def log_likelihood(self) -> float:
        """Maximized log-likelihood (minus the regularization penalty, if any)."""
        self._require_fitted("reading the log-likelihood")
        return self.result.log_likelihood

    @property
    def n_customers(self) -> Optional[int]:
        return self.model_metadata['n_customers']

    def _prediction_params(self) -> pd.Series:
        """Optimizer-space parameters with constraints expanded and without m."""
        params = expand_constrained_params(self.result.params, self.names_constr)
        if self.use_cor:
            params = params.drop(NAME_COR_PARAM_M)
        return params

    def _coef_names(self) -> List[str]:
        rename = dict(zip(self.variant.names_prefixed_params_model, MODEL_PARAM_NAMES))
        rename[NAME_COR_PARAM_M] = NAME_COR
        return [rename.get(name, name) for name in self.result.params.index]

    def coef(self) -> pd.Series:
        """
        Estimates on their natural scale.

        Model parameters are exponentiated, covariate coefficients are
        reported as estimated and the correlation parameter m is mapped back
        to Cor(life,trans).
        """
        self._require_fitted("reading coefficients")
        params = self.result.params
        values = params.copy()

        names_model = list(self.variant.names_prefixed_params_model)
        values[names_model] = np.exp(params[names_model])
        if self.use_cor:
            r, alpha, _, s, beta = self.variant.model_params(params)
            values[NAME_COR_PARAM_M] = m_to_cor(params[NAME_COR_PARAM_M], r, alpha, s, beta)

        values.index = self._coef_names()
        return values

    def vcov(self) -> pd.DataFrame:
        """
        Variance-covariance matrix of the natural-scale estimates (delta method).

        Returns:
            DataFrame indexed by the names of ``coef()``; all NaN if no Hessian is available
        """
        self._require_fitted("computing the variance-covariance matrix")
        hessian = self.result.hessian.to_numpy()
        names = self._coef_names()

        if np.any(~np.isfinite(hessian)):
            return pd.DataFrame(np.full(hessian.shape, np.nan), index=names, columns=names)

        try:
            vcov_optim = np.linalg.inv(hessian)
        except np.linalg.LinAlgError:
            message = "The Hessian is singular; using its pseudo-inverse for the variance-covariance matrix"
            logger.warning(message)
            warnings.warn(message, EstimationFailureWarning, stacklevel=2)
            vcov_optim = np.linalg.pinv(hessian)

        jacobian = self.variant.vcov_jacobian(
            self.result.params, NAME_COR_PARAM_M if self.use_cor else None
        ).to_numpy()
        vcov = jacobian @ vcov_optim @ jacobian
        return pd.DataFrame(vcov, index=names, columns=names)

    def summary(self, level: float = 0.95) -> pd.DataFrame:
        """
        Coefficient table with standard errors, z-values, p-values and confidence intervals.

        Args:
            level: Confidence level of the intervals

        Returns:
            DataFrame with one row per coefficient
        """
        self._require_fitted("creating a summary")
        estimates = self.coef()
        with np.errstate(invalid='ignore'):
            std_errors = np.sqrt(np.diag(self.vcov().to_numpy()))
        z_values = estimates.to_numpy() / std_errors
        quantile = norm.ppf(0.5 + level / 2.0)
        lower_pct = f"{100 * (1 - level) / 2:g} %"
        upper_pct = f"{100 * (1 + level) / 2:g} %"

        return pd.DataFrame({
            'Estimate': estimates.to_numpy(),
            'Std. Error': std_errors,
            'z-val': z_values,
            'Pr(>|z|)': 2.0 * norm.sf(np.abs(z_values)),
            lower_pct: estimates.to_numpy() - quantile * std_errors,
            upper_pct: estimates.to_numpy() + quantile * std_errors,
        }, index=estimates.index)

    def _customers(self, data: Optional[DataInput]) -> CustomerData:
        return self.training_data if data is None else self._prepare_data(data)

    def predict_probability_alive(self, data: Optional[DataInput] = None) -> pd.Series:
        """
        Probability that each customer is still alive at the end of calibration.

        Args:
            data: Customers to score (defaults to the training data)

        Returns:
            Series of P(Alive) indexed by customer id
        """
        self._require_fitted("making predictions")
        customers = self._customers(data)
        metrics = self.variant.prediction_metrics(self._prediction_params(), customers, settings=self.quadrature)
        return pd.Series(metrics['PAlive'], index=customers.ids, name='PAlive')

    def predict_expected_transactions(self, periods: float, data: Optional[DataInput] = None) -> pd.Series:
        """
        Conditional expected number of transactions in the next ``periods``.

        Args:
            periods: Length of the prediction horizon
            data: Customers to score (defaults to the training data)

        Returns:
            Series of expected counts indexed by customer id
        """
        self._require_fitted("making predictions")
        customers = self._customers(data)
        metrics = self.variant.prediction_metrics(self._prediction_params(), customers, periods, self.quadrature)
        return pd.Series(metrics['CET'], index=customers.ids, name='CET')

    def expectation(self, t: float, data: Optional[DataInput] = None) -> pd.Series:
        """Unconditional expected number of transactions in (0, t] per customer."""
        self._require_fitted("computing expectations")
        customers = self._customers(data)
        values = self.variant.expectation(self._prediction_params(), customers, t, self.quadrature)
        return pd.Series(values, index=customers.ids, name='expectation')

    def predict(self, data: Optional[DataInput] = None, periods: Optional[float] = None) -> pd.DataFrame:
        """
        Per-customer predictions: P(Alive), CET and DERT.

        DERT is not defined for this model and reported as 0.

        Args:
            data: Customers to score (defaults to the training data)
            periods: Prediction horizon (default PREDICTION_PERIODS)

        Returns:
            DataFrame indexed by customer id
        """
        self._require_fitted("making predictions")
        periods = self.config.estimation.prediction_periods if periods is None else periods
        customers = self._customers(data)
        metrics = self.variant.prediction_metrics(self._prediction_params(), customers, periods, self.quadrature)

        predictions = pd.DataFrame({
            'x': customers.x,
            't_x': customers.t_x,
            'T_cal': customers.T_cal,
            'period_length': float(periods),
            'PAlive': metrics['PAlive'],
            'CET': metrics['CET'],
            'DERT': 0.0,
        }, index=customers.ids)

        logger.info(f"Predicted {len(predictions)} customers over {periods} periods")
        return predictions

    def get_model_diagnostics(self) -> Dict:
        """Get optimizer, Hessian and parameter diagnostics."""
        self._require_fitted("getting diagnostics")
        result = self.result
        hessian = result.hessian.to_numpy()

        hessian_diag = {'available': bool(np.all(np.isfinite(hessian)))}
        if hessian_diag['available']:
            eigenvalues = np.linalg.eigvalsh((hessian + hessian.T) / 2.0)
            hessian_diag.update({
                'symmetric': bool(np.allclose(hessian, hessian.T)),
                'positive_definite': bool(np.all(eigenvalues > 0)),
                'condition_number': float(np.linalg.cond(hessian)),
            })

        return {
            'optimization': {
                'method': result.method,
                'converged': result.converged,
                'reliable': result.reliable,
                'n_iterations': result.n_iterations,
                'n_evaluations': result.n_evaluations,
                'log_likelihood': result.log_likelihood,
                'message': result.message,
            },
            'interlayers': self.interlayer_config.active_layers(),
            'hessian': hessian_diag,
            'parameters': self.summary().to_dict(),
            'metadata': self.model_metadata.copy(),
        }

    def save_model(self, filepath: Union[str, Path]) -> None:
        """
        Save the fitted model to disk.

        Args:
            filepath: Path to save the model
        """
        self._require_fitted("saving")

        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        model_data = {
            'names_cov_life': self.variant.names_cov_life,
            'names_cov_trans': self.variant.names_cov_trans,
            'id_column': self.id_column,
            'quadrature': self.quadrature,
            'result': self.result,
            'interlayer_config': self.interlayer_config,
            'names_constr': self.names_constr,
            'training_data': self.training_data,
            'model_metadata': self.model_metadata,
        }

        try:
            with open(filepath, 'wb') as f:
                pickle.dump(model_data, f)

            logger.info(f"Model saved to {filepath}")

        except (OSError, pickle.PicklingError) as e:
            logger.error(f"Failed to save model: {e}")
            raise GGompertzNBDModelError(f"Failed to save model: {e}") from e

    @classmethod
    def load_model(cls, filepath: Union[str, Path]) -> 'GGompertzNBDModel':
        """
        Load a fitted model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded GGompertzNBDModel instance
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise GGompertzNBDModelError(f"Model file not found: {filepath}")

        try:
            with open(filepath, 'rb') as f:
                model_data = pickle.load(f)

            model = cls(
                names_cov_life=model_data['names_cov_life'],
                names_cov_trans=model_data['names_cov_trans'],
                id_column=model_data['id_column'],
                quadrature=model_data['quadrature'],
            )
            model.result = model_data['result']
            model.interlayer_config = model_data['interlayer_config']
            model.names_constr = model_data['names_constr']
            model.training_data = model_data['training_data']
            model.model_metadata = model_data['model_metadata']

            logger.info(f"Model loaded from {filepath}")
            return model

        except (OSError, pickle.UnpicklingError, KeyError, AttributeError, EOFError) as e:
            logger.error(f"Failed to load model: {e}")
            raise GGompertzNBDModelError(f"Failed to load model: {e}") from e

    def __repr__(self) -> str:
        status = "fitted" if self.is_fitted else "unfitted"
        return f"GGompertzNBDModel({self.variant!r}, {status})"


def create_ggomnbd_model(
    names_cov_life: Sequence[str] = (),
    names_cov_trans: Sequence[str] = (),
    id_column: Optional[str] = None,
    quadrature: Optional[QuadratureSettings] = None
) -> GGompertzNBDModel:
    """
    Factory function to create a GGompertz/NBD model instance.

    Args:
        names_cov_life: Lifetime covariate columns (none for the standard model)
        names_cov_trans: Transaction covariate columns (none for the standard model)
        id_column: Column holding customer identifiers
        quadrature: Integration settings

    Returns:
        GGompertzNBDModel instance
    """
    return GGompertzNBDModel(
        names_cov_life=names_cov_life,
        names_cov_trans=names_cov_trans,
        id_column=id_column,
        quadrature=quadrature
    )


def fit_ggomnbd_model(
    data: DataInput,
    names_cov_life: Sequence[str] = (),
    names_cov_trans: Sequence[str] = (),
    **fit_kwargs
) -> GGompertzNBDModel:
    """
    Convenience function to create and fit a GGompertz/NBD model.

    Args:
        data: Customer data with x, t_x, T_cal and covariate columns
        names_cov_life: Lifetime covariate columns
        names_cov_trans: Transaction covariate columns
        **fit_kwargs: Additional arguments passed to fit() method

    Returns:
        Fitted GGompertzNBDModel instance
    """
    model = create_ggomnbd_model(
        names_cov_life=names_cov_life,
        names_cov_trans=names_cov_trans
    )

    return model.fit(data, **fit_kwargs)

"""
GGompertz/NBD model variants.

A variant knows its parameter names and start values, how to move between
natural and optimizer scale, and how to turn a parameter vector into the
per-customer heterogeneity (alpha_i, beta_i), expectations and prediction
metrics. ``LikelihoodTarget`` binds a variant to customer data and is the
base stage of the interlayer chain.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..data.customers import CustomerData
from ..errors import InvalidStartParameter
from .covariates import build_heterogeneity
from .likelihood import (
    ggomnbd_ll_ind,
    likelihood_sum_nocov,
    likelihood_sum_staticcov,
)
from .predictions import ggomnbd_cet, ggomnbd_expectation, ggomnbd_palive
from .quadrature import QuadratureSettings
from .transforms import (
    DEFAULT_START_PARAMS_MODEL,
    MODEL_PARAM_NAMES,
    PREFIXED_MODEL_PARAM_NAMES,
    backtransform_params,
    transform_start_params,
    vcov_jacobian,
)

logger = logging.getLogger(__name__)

DEFAULT_START_PARAM_COV = 0.1


def life_param_name(name_cov: str) -> str:
    return f"life.{name_cov}"


def trans_param_name(name_cov: str) -> str:
    return f"trans.{name_cov}"


class ModelVariant(ABC):
    """Common interface of the GGompertz/NBD variants."""

    name_model = "GGompertz/NBD"
    names_prefixed_params_model = PREFIXED_MODEL_PARAM_NAMES

    @property
    def start_params_model(self) -> Dict[str, float]:
        return dict(DEFAULT_START_PARAMS_MODEL)

    @property
    def names_cov_life(self) -> List[str]:
        return []

    @property
    def names_cov_trans(self) -> List[str]:
        return []

    def model_params(self, prefixed_params: pd.Series) -> Tuple[float, float, float, float, float]:
        """Natural-scale r, alpha, b, s, beta from optimizer-space parameters."""
        natural = backtransform_params(prefixed_params)
        return tuple(float(natural[name]) for name in MODEL_PARAM_NAMES)

    def transform_start_params(self, start_params_model: Optional[Mapping[str, float]] = None) -> pd.Series:
        """Optimizer-space model start parameters (defaults filled in)."""
        params = self.start_params_model
        if start_params_model is not None:
            params = dict(start_params_model)
        return transform_start_params(params)

    def backtransform_params(self, prefixed_params: pd.Series) -> pd.Series:
        """Natural-scale model parameters followed by any covariate coefficients."""
        return backtransform_params(prefixed_params)

    @abstractmethod
    def heterogeneity(self, prefixed_params: pd.Series, data: CustomerData) -> Tuple[np.ndarray, np.ndarray]:
        """Per-customer (alpha_i, beta_i)."""

    @abstractmethod
    def ll_sum(self, prefixed_params: pd.Series, data: CustomerData,
               settings: Optional[QuadratureSettings] = None) -> float:
        """Negative log-likelihood sum over all customers."""

    def ll_individual(
        self,
        prefixed_params: pd.Series,
        data: CustomerData,
        settings: Optional[QuadratureSettings] = None,
        alpha_offset: float = 0.0,
        beta_offset: float = 0.0
    ) -> np.ndarray:
        """Per-customer log-likelihood, optionally at shifted alpha_i / beta_i."""
        r, _, b, s, _ = self.model_params(prefixed_params)
        alpha_i, beta_i = self.heterogeneity(prefixed_params, data)
        return ggomnbd_ll_ind(
            r, b, s, alpha_i + alpha_offset, beta_i + beta_offset,
            data.x, data.t_x, data.T_cal, settings
        )

    def vcov_jacobian(self, prefixed_params: pd.Series, name_cor_param_m: Optional[str] = None) -> pd.DataFrame:
        return vcov_jacobian(prefixed_params, self.names_prefixed_params_model, name_cor_param_m)

    def expectation(
        self,
        prefixed_params: pd.Series,
        data: CustomerData,
        t: float,
        settings: Optional[QuadratureSettings] = None
    ) -> np.ndarray:
        """Unconditional expected transactions in (0, t] for every customer."""
        r, _, b, s, _ = self.model_params(prefixed_params)
        alpha_i, beta_i = self.heterogeneity(prefixed_params, data)
        return ggomnbd_expectation(r, b, s, alpha_i, beta_i, t, settings)

    def prediction_metrics(
        self,
        prefixed_params: pd.Series,
        data: CustomerData,
        periods: Optional[float] = None,
        settings: Optional[QuadratureSettings] = None
    ) -> Dict[str, np.ndarray]:
        """
        P(Alive) for every customer and, if ``periods`` is given, CET over that horizon.

        Returns:
            Dictionary with keys 'PAlive' and optionally 'CET'
        """
        r, _, b, s, _ = self.model_params(prefixed_params)
        alpha_i, beta_i = self.heterogeneity(prefixed_params, data)
        metrics = {
            'PAlive': ggomnbd_palive(r, b, s, alpha_i, beta_i, data.x, data.t_x, data.T_cal, settings),
        }
        if periods is not None:
            metrics['CET'] = ggomnbd_cet(
                r, b, s, alpha_i, beta_i, data.x, data.t_x, data.T_cal, periods, settings,
                palive=metrics['PAlive'],
            )
        return metrics

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class NoCovariateVariant(ModelVariant):
    """Same alpha and beta for every customer."""

    name_model = "GGompertz/NBD Standard"

    def heterogeneity(self, prefixed_params, data):
        _, alpha_0, _, _, beta_0 = self.model_params(prefixed_params)
        return np.full(data.n_customers, alpha_0), np.full(data.n_customers, beta_0)

    def ll_sum(self, prefixed_params, data, settings=None):
        log_params = prefixed_params[list(self.names_prefixed_params_model)].to_numpy(dtype=np.float64)
        return likelihood_sum_nocov(log_params, data.x, data.t_x, data.T_cal, settings)


class StaticCovariateVariant(ModelVariant):
    """
    Time-invariant covariates for both processes.

    Covariate coefficients are estimated on their original scale and are
    named ``life.<cov>`` / ``trans.<cov>``.
    """

    name_model = "GGompertz/NBD with Static Covariates"

    def __init__(self, names_cov_life: Sequence[str], names_cov_trans: Sequence[str]):
        self._names_cov_life = list(names_cov_life)
        self._names_cov_trans = list(names_cov_trans)

    @property
    def names_cov_life(self) -> List[str]:
        return list(self._names_cov_life)

    @property
    def names_cov_trans(self) -> List[str]:
        return list(self._names_cov_trans)

    @property
    def names_prefixed_params_life(self) -> List[str]:
        return [life_param_name(name) for name in self._names_cov_life]

    @property
    def names_prefixed_params_trans(self) -> List[str]:
        return [trans_param_name(name) for name in self._names_cov_trans]

    def transform_start_params_cov(
        self,
        start_params_life: Optional[Mapping[str, float]] = None,
        start_params_trans: Optional[Mapping[str, float]] = None,
        names_constr: Sequence[str] = ()
    ) -> pd.Series:
        """
        Start values for the free covariate coefficients.

        Covariates in ``names_constr`` are excluded; their single start value
        is handled by the constraint layer. Missing entries default to 0.1.

        Raises:
            InvalidStartParameter: For names that are not free covariates, or non-finite values
        """
        names_constr = set(names_constr)
        values = {}
        for process, names, given, prefix in (
            ('life', self._names_cov_life, start_params_life, life_param_name),
            ('trans', self._names_cov_trans, start_params_trans, trans_param_name),
        ):
            free = [name for name in names if name not in names_constr]
            given = dict(given or {})
            unknown = [name for name in given if name not in free]
            if unknown:
                raise InvalidStartParameter(
                    f"Start parameters given for {unknown} which are not free {process} covariates {free}"
                )
            for name in free:
                value = float(given.get(name, DEFAULT_START_PARAM_COV))
                if not np.isfinite(value):
                    raise InvalidStartParameter(f"Start parameter for {process}.{name} must be finite")
                values[prefix(name)] = value

        return pd.Series(values, dtype=np.float64)

    def backtransform_params(self, prefixed_params: pd.Series) -> pd.Series:
        model = super().backtransform_params(prefixed_params)
        cov = prefixed_params[self.names_prefixed_params_life + self.names_prefixed_params_trans]
        return pd.concat([model, cov.astype(np.float64)])

    def _ordered_params(self, prefixed_params: pd.Series) -> np.ndarray:
        names = (list(self.names_prefixed_params_model)
                 + self.names_prefixed_params_life + self.names_prefixed_params_trans)
        return prefixed_params[names].to_numpy(dtype=np.float64)

    def heterogeneity(self, prefixed_params, data):
        _, alpha_0, _, _, beta_0 = self.model_params(prefixed_params)
        return build_heterogeneity(
            alpha_0, beta_0,
            trans_coeffs=prefixed_params[self.names_prefixed_params_trans].to_numpy(dtype=np.float64),
            life_coeffs=prefixed_params[self.names_prefixed_params_life].to_numpy(dtype=np.float64),
            trans_covariates=data.cov_trans[self._names_cov_trans].to_numpy(),
            life_covariates=data.cov_life[self._names_cov_life].to_numpy(),
            n_customers=data.n_customers,
        )

    def ll_sum(self, prefixed_params, data, settings=None):
        return likelihood_sum_staticcov(
            self._ordered_params(prefixed_params),
            data.x, data.t_x, data.T_cal,
            data.cov_life[self._names_cov_life].to_numpy(),
            data.cov_trans[self._names_cov_trans].to_numpy(),
            settings,
        )

    def __repr__(self) -> str:
        return (f"StaticCovariateVariant(names_cov_life={self._names_cov_life}, "
                f"names_cov_trans={self._names_cov_trans})")


class LikelihoodTarget:
    """A variant bound to customer data: the base of the interlayer chain."""

    def __init__(self, variant: ModelVariant, data: CustomerData,
                 settings: Optional[QuadratureSettings] = None):
        self.variant = variant
        self.data = data
        self.settings = settings or QuadratureSettings()

    def __call__(self, params: pd.Series, **options) -> float:
        return self.variant.ll_sum(params, self.data, self.settings)

    def individual(self, params: pd.Series, alpha_offset: float = 0.0,
                   beta_offset: float = 0.0, **options) -> np.ndarray:
        return self.variant.ll_individual(
            params, self.data, self.settings, alpha_offset=alpha_offset, beta_offset=beta_offset
        )

    def latent_rate_params(self, params: pd.Series) -> Tuple[float, float, np.ndarray, np.ndarray]:
        """Shape parameters r, s and per-customer alpha_i, beta_i."""
        r, _, _, s, _ = self.variant.model_params(params)
        alpha_i, beta_i = self.variant.heterogeneity(params, self.data)
        return r, s, alpha_i, beta_i


def create_variant(names_cov_life: Sequence[str] = (), names_cov_trans: Sequence[str] = ()) -> ModelVariant:
    """Static-covariate variant if any covariate is named, else the standard model."""
    if list(names_cov_life) or list(names_cov_trans):
        return StaticCovariateVariant(names_cov_life, names_cov_trans)
    return NoCovariateVariant()

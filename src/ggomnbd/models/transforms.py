"""
Mapping between the model's natural parameters and the optimizer space.

Model parameters (r, alpha, b, s, beta) are estimated on log scale,
covariate coefficients on their original scale, and the correlation
between the purchase and attrition rates through the Sarmanov mixing
weight ``m``:

    f(lambda, eta) = f(lambda) f(eta) [1 + m (e^-lambda - A) (e^-eta - B)]
    A = (alpha / (alpha + 1))^r,   B = (beta / (beta + 1))^s

which implies

    Cor(lambda, eta) = m * sqrt(r s) * (alpha/(alpha+1))^(r+1) * (beta/(beta+1))^(s+1)
"""

from typing import Iterable, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from ..errors import InvalidStartParameter

MODEL_PARAM_NAMES = ('r', 'alpha', 'b', 's', 'beta')
PREFIXED_MODEL_PARAM_NAMES = ('log.r', 'log.alpha', 'log.b', 'log.s', 'log.beta')

NAME_COR_PARAM_M = 'correlation.param.m'
NAME_COR = 'Cor(life,trans)'

DEFAULT_START_PARAMS_MODEL = {'r': 1.0, 'alpha': 1.0, 'b': 1.0, 's': 1.0, 'beta': 1.0}

_EPS = np.finfo(np.float64).eps


def transform_start_params(start_params_model: Mapping[str, float]) -> pd.Series:
    """
    Log-transform the model start parameters.

    Args:
        start_params_model: Natural-scale values keyed by r, alpha, b, s, beta

    Returns:
        Series indexed by log.r, log.alpha, log.b, log.s, log.beta

    Raises:
        InvalidStartParameter: If a parameter is missing, unknown, non-finite or <= 0
    """
    given = dict(start_params_model)
    missing = [name for name in MODEL_PARAM_NAMES if name not in given]
    unknown = [name for name in given if name not in MODEL_PARAM_NAMES]
    if missing or unknown:
        raise InvalidStartParameter(
            f"Model start parameters must be exactly {list(MODEL_PARAM_NAMES)}; "
            f"missing {missing}, unknown {unknown}"
        )

    values = np.array([given[name] for name in MODEL_PARAM_NAMES], dtype=np.float64)
    if not np.all(np.isfinite(values)) or np.any(values <= 0):
        raise InvalidStartParameter(
            "Please provide only model start parameters greater than 0 as they "
            "will be log()-ed for the optimization!"
        )

    return pd.Series(np.log(values), index=list(PREFIXED_MODEL_PARAM_NAMES))


def backtransform_params(prefixed_params: pd.Series) -> pd.Series:
    """Exponentiate the log-scale model parameters and restore their names."""
    values = np.exp(prefixed_params[list(PREFIXED_MODEL_PARAM_NAMES)].to_numpy(dtype=np.float64))
    return pd.Series(values, index=list(MODEL_PARAM_NAMES))


def mixing_constants(r, alpha, s, beta) -> Tuple[np.ndarray, np.ndarray]:
    """Return A = E[exp(-lambda)] and B = E[exp(-eta)] under the Gamma mixtures."""
    alpha = np.asarray(alpha, dtype=np.float64)
    beta = np.asarray(beta, dtype=np.float64)
    A = np.exp(r * (np.log(alpha) - np.log1p(alpha)))
    B = np.exp(s * (np.log(beta) - np.log1p(beta)))
    return A, B


def dcor_dm(r, alpha, s, beta):
    """Derivative of the implied correlation with respect to m (a constant)."""
    return (np.sqrt(r * s)
            * np.exp((r + 1.0) * (np.log(alpha) - np.log1p(alpha)))
            * np.exp((s + 1.0) * (np.log(beta) - np.log1p(beta))))


def cor_to_m(cor: float, r: float, alpha: float, s: float, beta: float) -> float:
    """
    Map a correlation in (-1, 1) to the mixing weight m.

    Raises:
        InvalidStartParameter: If ``cor`` is not strictly inside (-1, 1)
    """
    if not np.isfinite(cor) or not -1.0 < cor < 1.0:
        raise InvalidStartParameter(f"The correlation must be in (-1, 1), got {cor}")
    return float(cor / dcor_dm(r, alpha, s, beta))


def m_to_cor(m: float, r: float, alpha: float, s: float, beta: float) -> float:
    """Map the mixing weight m back to a correlation clipped into (-1, 1)."""
    cor = float(m * dcor_dm(r, alpha, s, beta))
    return float(np.clip(cor, -1.0 + _EPS, 1.0 - _EPS))


def param_m_bounds(r, alpha, s, beta) -> Tuple[float, float]:
    """
    Range of m for which the Sarmanov density is non-negative.

    ``alpha`` and ``beta`` may be per-customer vectors; the returned interval
    is the one valid for every customer.
    """
    A, B = mixing_constants(r, alpha, s, beta)
    lower = -1.0 / np.maximum(A * B, (1.0 - A) * (1.0 - B))
    upper = 1.0 / np.maximum(A * (1.0 - B), (1.0 - A) * B)
    return float(np.max(lower)), float(np.min(upper))


def vcov_jacobian(
    prefixed_params: pd.Series,
    names_model: Iterable[str] = PREFIXED_MODEL_PARAM_NAMES,
    name_cor_param_m: Optional[str] = None
) -> pd.DataFrame:
    """
    Diagonal Jacobian of the back-transformation, for delta-method errors.

    The model block holds exp(value); covariate coefficients are untouched
    (identity). The correlation entry, if any, is d(cor)/d(m) at the
    estimated model parameters.
    """
    names = list(prefixed_params.index)
    diag = np.ones(len(names), dtype=np.float64)

    names_model = list(names_model)
    for name in names_model:
        diag[names.index(name)] = np.exp(prefixed_params[name])

    if name_cor_param_m is not None and name_cor_param_m in names:
        natural = backtransform_params(prefixed_params)
        diag[names.index(name_cor_param_m)] = dcor_dm(
            natural['r'], natural['alpha'], natural['s'], natural['beta']
        )

    return pd.DataFrame(np.diag(diag), index=names, columns=names)

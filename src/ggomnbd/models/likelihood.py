"""
Log-likelihood of the GGompertz/NBD model.

For a customer with x repeat transactions, last transaction at t_x and
calibration length T, the likelihood is the sum of two branches:

- alive at T (closed form):
    L1 = lgamma(r+x) - lgamma(r) + r (log a - log(a+T)) - x log(a+T)
         + s (log b_i - log(b_i - 1 + e^{bT}))
- died in (t_x, T] (integral):
    L2 = lgamma(r+x) - lgamma(r) + log b + r log a + log s + s log b_i
         + log  int_{t_x}^{T} (y+a)^-(r+x) (b_i + e^{by} - 1)^-(s+1) e^{by} dy

with a = alpha_i and b_i = beta_i. Both branches are combined with a
log-sum-exp. The integral is evaluated per customer by the quadrature
engine on an integrand scaled by its larger endpoint value, so that
neither e^{by} overflows nor the integral underflows to zero.
"""

import logging
import math
import warnings
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.special import gammaln

from ..errors import DimensionMismatch, DivergenceWarning
from .covariates import NUM_MODEL_PARAMS, build_heterogeneity, split_covariate_params
from .quadrature import QuadratureSettings, integrate_customers

logger = logging.getLogger(__name__)

# Upper integrand bound above which the log of the integral is flagged
DIVERGENCE_UPPER_BOUND = 1e200

# b*y from which log(beta_i - 1 + e^{by}) switches to the overflow-safe form
SHIFTED_EXP_SWITCH = 30.0


def log_shifted_exp(beta_i, by):
    """
    log(beta_i - 1 + e^{by}) for arrays.

    Below ``SHIFTED_EXP_SWITCH`` the sum is formed as beta_i + expm1(by), which
    keeps beta_i even when it is far below machine epsilon. Above it, the
    e^{by} factor is pulled out of the logarithm so that nothing overflows.
    """
    by = np.asarray(by, dtype=np.float64)
    with np.errstate(over='ignore', invalid='ignore', divide='ignore'):
        small = np.log(beta_i + np.expm1(np.minimum(by, SHIFTED_EXP_SWITCH)))
        large = by + np.log1p((beta_i - 1.0) * np.exp(-by))
    return np.where(by < SHIFTED_EXP_SWITCH, small, large)


def log_shifted_exp_scalar(beta_i: float, by: float) -> float:
    """Scalar ``log_shifted_exp`` for use inside integrands."""
    if by < SHIFTED_EXP_SWITCH:
        return math.log(beta_i + math.expm1(by))
    return by + math.log1p((beta_i - 1.0) * math.exp(-by))


@dataclass(frozen=True)
class IntegrandContext:
    """Fixed per-customer parameters of the integrand."""

    alpha_i: float
    beta_i: float
    r_plus_x: float
    b: float
    s_plus_1: float
    log_offset: float = 0.0


def _log_integrand(y, alpha_i, beta_i, r_plus_x, b, s_plus_1):
    by = b * y
    return -r_plus_x * np.log(y + alpha_i) - s_plus_1 * log_shifted_exp(beta_i, by) + by


def ggomnbd_integrand(y: float, ctx: IntegrandContext) -> float:
    """Integrand (y+a)^-(r+x) (b_i+e^{by}-1)^-(s+1) e^{by}, scaled by exp(-log_offset)."""
    by = ctx.b * y
    log_value = (-ctx.r_plus_x * math.log(y + ctx.alpha_i)
                 - ctx.s_plus_1 * log_shifted_exp_scalar(ctx.beta_i, by)
                 + by)
    return math.exp(log_value - ctx.log_offset)


def integral_bounds(r, b, s, alpha_i, beta_i, x, t_x) -> Tuple[float, float]:
    """
    Coarse lower and upper bounds on the integrand across all customers.

    Uses the extremal values of t_x, alpha_i, beta_i and x. Only meant
    to flag parameter regions in which the integral may be unreliable.
    """
    with np.errstate(over='ignore', under='ignore', invalid='ignore', divide='ignore'):
        exponent = -(r + np.max(x))
        below = (np.float64(np.max(t_x) + np.max(alpha_i)) ** exponent
                 * np.float64(np.max(beta_i) + np.expm1(b * np.max(t_x))) ** -(s + 1.0)
                 * np.exp(b * np.min(t_x)))
        above = (np.float64(np.min(t_x) + np.min(alpha_i)) ** exponent
                 * np.float64(np.min(beta_i) + np.expm1(b * np.min(t_x))) ** -(s + 1.0)
                 * np.exp(b * np.max(t_x)))
    return float(below), float(above)


def check_integral_divergence(r, b, s, alpha_i, beta_i, x, t_x) -> bool:
    """
    Warn if the integrand bounds suggest the log-integral may diverge.

    Returns:
        True if a DivergenceWarning was emitted
    """
    below, above = integral_bounds(r, b, s, alpha_i, beta_i, x, t_x)
    flagged = False

    if below == 0.0:
        message = "Log of the integral might diverge; Lower Boundary = 0"
        logger.warning(message)
        warnings.warn(message, DivergenceWarning, stacklevel=3)
        flagged = True

    if above > DIVERGENCE_UPPER_BOUND:
        message = f"Log of the integral might diverge; Upper Boundary = {above}"
        logger.warning(message)
        warnings.warn(message, DivergenceWarning, stacklevel=3)
        flagged = True

    return flagged


def customer_arrays(x, t_x, T_cal) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Convert the summary statistics to float arrays of equal length."""
    arrays = tuple(np.atleast_1d(np.asarray(v, dtype=np.float64)) for v in (x, t_x, T_cal))
    lengths = {a.shape for a in arrays}
    if len(lengths) != 1 or arrays[0].ndim != 1:
        raise DimensionMismatch(
            f"x, t_x and T_cal must be 1-D and of equal length, got shapes "
            f"{[a.shape for a in arrays]}"
        )
    return arrays


def ggomnbd_ll_components(
    r: float,
    b: float,
    s: float,
    alpha_i: np.ndarray,
    beta_i: np.ndarray,
    x: np.ndarray,
    t_x: np.ndarray,
    T_cal: np.ndarray,
    settings: Optional[QuadratureSettings] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Both log-likelihood branches for every customer.

    Args:
        r, b, s: Natural-scale model parameters
        alpha_i, beta_i: Per-customer heterogeneity parameters
        x, t_x, T_cal: Customer summary statistics
        settings: Quadrature settings (defaults: 1e-8 / 1e-8, 1000 intervals)

    Returns:
        Tuple (L1, L2): closed-form and integral branch
    """
    settings = settings or QuadratureSettings()
    x, t_x, T_cal = customer_arrays(x, t_x, T_cal)
    n = x.size
    alpha_i = np.broadcast_to(np.asarray(alpha_i, dtype=np.float64), (n,))
    beta_i = np.broadcast_to(np.asarray(beta_i, dtype=np.float64), (n,))

    if n == 0:
        return np.empty(0), np.empty(0)

    check_integral_divergence(r, b, s, alpha_i, beta_i, x, t_x)

    with np.errstate(over='ignore', divide='ignore', invalid='ignore'):
        offsets = np.maximum(
            _log_integrand(t_x, alpha_i, beta_i, r + x, b, s + 1.0),
            _log_integrand(T_cal, alpha_i, beta_i, r + x, b, s + 1.0),
        )
    offsets = np.where(np.isfinite(offsets), offsets, 0.0)

    contexts = [
        IntegrandContext(
            alpha_i=float(alpha_i[i]),
            beta_i=float(beta_i[i]),
            r_plus_x=float(r + x[i]),
            b=float(b),
            s_plus_1=float(s + 1.0),
            log_offset=float(offsets[i]),
        )
        for i in range(n)
    ]
    integrals = integrate_customers(ggomnbd_integrand, t_x, T_cal, contexts, settings)

    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        log_integrals = np.log(integrals.values) + offsets

        lgamma_term = gammaln(r + x) - gammaln(r)
        log_alpha_T = np.log(alpha_i + T_cal)
        log_beta_exp = log_shifted_exp(beta_i, b * T_cal)

        L1 = (lgamma_term
              + r * (np.log(alpha_i) - log_alpha_T)
              - x * log_alpha_T
              + s * (np.log(beta_i) - log_beta_exp))
        L2 = (lgamma_term
              + np.log(b) + r * np.log(alpha_i)
              + np.log(s) + s * np.log(beta_i)
              + log_integrals)

    return L1, L2


def ggomnbd_ll_ind(
    r: float,
    b: float,
    s: float,
    alpha_i: np.ndarray,
    beta_i: np.ndarray,
    x: np.ndarray,
    t_x: np.ndarray,
    T_cal: np.ndarray,
    settings: Optional[QuadratureSettings] = None
) -> np.ndarray:
    """Per-customer log-likelihood log(exp(L1) + exp(L2)), in input order."""
    L1, L2 = ggomnbd_ll_components(r, b, s, alpha_i, beta_i, x, t_x, T_cal, settings)
    return np.logaddexp(L1, L2)


def _model_params(log_params) -> Tuple[float, float, float, float, float]:
    log_params = np.asarray(log_params, dtype=np.float64)
    if log_params.shape != (NUM_MODEL_PARAMS,):
        raise DimensionMismatch(
            f"Expected {NUM_MODEL_PARAMS} log model parameters (r, alpha, b, s, beta), "
            f"got shape {log_params.shape}"
        )
    r, alpha_0, b, s, beta_0 = np.exp(log_params)
    return r, alpha_0, b, s, beta_0


def likelihood_individual_nocov(
    log_params,
    x,
    t_x,
    T_cal,
    settings: Optional[QuadratureSettings] = None
) -> np.ndarray:
    """
    Individual log-likelihood values without covariates.

    Args:
        log_params: log(r), log(alpha), log(b), log(s), log(beta), in this order
        x, t_x, T_cal: Customer summary statistics
        settings: Quadrature settings

    Returns:
        One log-likelihood value per customer
    """
    r, alpha_0, b, s, beta_0 = _model_params(log_params)
    x, t_x, T_cal = customer_arrays(x, t_x, T_cal)
    alpha_i = np.full(x.size, alpha_0)
    beta_i = np.full(x.size, beta_0)
    return ggomnbd_ll_ind(r, b, s, alpha_i, beta_i, x, t_x, T_cal, settings)


def likelihood_sum_nocov(log_params, x, t_x, T_cal, settings: Optional[QuadratureSettings] = None) -> float:
    """Negative sum of the individual log-likelihoods (to be minimized)."""
    return -float(np.sum(likelihood_individual_nocov(log_params, x, t_x, T_cal, settings)))


def _covariate_matrix(covariates, n_customers: int) -> np.ndarray:
    if covariates is None:
        return np.empty((n_customers, 0), dtype=np.float64)
    matrix = np.asarray(covariates, dtype=np.float64)
    if matrix.ndim == 1:
        matrix = matrix.reshape(-1, 1)
    return matrix


def likelihood_individual_staticcov(
    params,
    x,
    t_x,
    T_cal,
    cov_life,
    cov_trans,
    settings: Optional[QuadratureSettings] = None
) -> np.ndarray:
    """
    Individual log-likelihood values with static covariates.

    ``params`` holds the 5 log model parameters, followed by one coefficient
    per lifetime covariate column and one per transaction covariate column,
    both on their original scale.

    Raises:
        DimensionMismatch: If the parameter vector does not match the covariates
    """
    x, t_x, T_cal = customer_arrays(x, t_x, T_cal)
    cov_life = _covariate_matrix(cov_life, x.size)
    cov_trans = _covariate_matrix(cov_trans, x.size)

    log_model, life_coeffs, trans_coeffs = split_covariate_params(
        params, cov_life.shape[1], cov_trans.shape[1]
    )
    r, alpha_0, b, s, beta_0 = _model_params(log_model)

    alpha_i, beta_i = build_heterogeneity(
        alpha_0, beta_0,
        trans_coeffs=trans_coeffs, life_coeffs=life_coeffs,
        trans_covariates=cov_trans, life_covariates=cov_life,
        n_customers=x.size
    )
    return ggomnbd_ll_ind(r, b, s, alpha_i, beta_i, x, t_x, T_cal, settings)


def likelihood_sum_staticcov(
    params,
    x,
    t_x,
    T_cal,
    cov_life,
    cov_trans,
    settings: Optional[QuadratureSettings] = None
) -> float:
    """Negative sum of the individual static-covariate log-likelihoods."""
    return -float(np.sum(likelihood_individual_staticcov(
        params, x, t_x, T_cal, cov_life, cov_trans, settings
    )))

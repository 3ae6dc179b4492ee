"""
Customer-level predictions of the GGompertz/NBD model.

- P(alive at T):            exp(L1 - LL)
- conditional expected transactions in (T, T + t]:
      PAlive * (r + x) / (a + T) * int_0^t ((b_i + e^{bT} - 1) / (b_i + e^{b(T+u)} - 1))^s du
- unconditional expected transactions in (0, t]:
      r / a * int_0^t (b_i / (b_i + e^{bu} - 1))^s du

with a = alpha_i and b_i = beta_i. Both integrands are survival ratios
bounded by 1, so they are integrated without rescaling.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .likelihood import customer_arrays, ggomnbd_ll_components, log_shifted_exp, log_shifted_exp_scalar
from .quadrature import QuadratureSettings, integrate_customers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SurvivalContext:
    """Per-customer parameters of a Gompertz survival-ratio integrand."""

    beta_i: float
    b: float
    s: float
    start: float
    log_numerator: float


def survival_ratio_integrand(u: float, ctx: SurvivalContext) -> float:
    log_denom = log_shifted_exp_scalar(ctx.beta_i, ctx.b * (ctx.start + u))
    return math.exp(ctx.log_numerator - ctx.s * log_denom)


def _integrate_survival(b, s, beta_i, start, periods, settings: QuadratureSettings) -> np.ndarray:
    n = beta_i.size
    log_numerator = s * log_shifted_exp(beta_i, b * start)
    contexts = [
        SurvivalContext(
            beta_i=float(beta_i[i]),
            b=float(b),
            s=float(s),
            start=float(start[i]),
            log_numerator=float(log_numerator[i]),
        )
        for i in range(n)
    ]
    result = integrate_customers(
        survival_ratio_integrand, np.zeros(n), np.broadcast_to(periods, (n,)), contexts, settings
    )
    return result.values


def ggomnbd_palive(
    r: float,
    b: float,
    s: float,
    alpha_i,
    beta_i,
    x,
    t_x,
    T_cal,
    settings: Optional[QuadratureSettings] = None
) -> np.ndarray:
    """Probability that each customer is still alive at the end of calibration."""
    L1, L2 = ggomnbd_ll_components(r, b, s, alpha_i, beta_i, x, t_x, T_cal, settings)
    return np.exp(L1 - np.logaddexp(L1, L2))


def ggomnbd_cet(
    r: float,
    b: float,
    s: float,
    alpha_i,
    beta_i,
    x,
    t_x,
    T_cal,
    periods: float,
    settings: Optional[QuadratureSettings] = None,
    palive: Optional[np.ndarray] = None
) -> np.ndarray:
    """
    Conditional expected transactions in the ``periods`` following T_cal.

    Args:
        r, b, s: Natural-scale model parameters
        alpha_i, beta_i: Per-customer heterogeneity parameters
        x, t_x, T_cal: Customer summary statistics
        periods: Length of the prediction horizon (>= 0)
        settings: Quadrature settings
        palive: Precomputed P(Alive), computed here if not given

    Returns:
        One expected count per customer
    """
    if periods < 0:
        raise ValueError(f"Prediction periods must be non-negative, got {periods}")

    settings = settings or QuadratureSettings()
    x, t_x, T_cal = customer_arrays(x, t_x, T_cal)
    n = x.size
    alpha_i = np.broadcast_to(np.asarray(alpha_i, dtype=np.float64), (n,))
    beta_i = np.broadcast_to(np.asarray(beta_i, dtype=np.float64), (n,))

    if palive is None:
        palive = ggomnbd_palive(r, b, s, alpha_i, beta_i, x, t_x, T_cal, settings)
    integrals = _integrate_survival(b, s, beta_i, T_cal, float(periods), settings)
    return palive * (r + x) / (alpha_i + T_cal) * integrals


def ggomnbd_expectation(
    r: float,
    b: float,
    s: float,
    alpha_i,
    beta_i,
    t,
    settings: Optional[QuadratureSettings] = None
) -> np.ndarray:
    """
    Unconditional expected number of transactions in (0, t] per customer.

    ``t`` may be a scalar or one horizon per customer.
    """
    settings = settings or QuadratureSettings()
    alpha_i = np.atleast_1d(np.asarray(alpha_i, dtype=np.float64))
    beta_i = np.broadcast_to(np.asarray(beta_i, dtype=np.float64), alpha_i.shape)
    t = np.broadcast_to(np.asarray(t, dtype=np.float64), alpha_i.shape)
    if np.any(t < 0):
        raise ValueError("Expectation horizons must be non-negative")

    integrals = _integrate_survival(b, s, beta_i, np.zeros(alpha_i.size), t, settings)
    return r / alpha_i * integrals

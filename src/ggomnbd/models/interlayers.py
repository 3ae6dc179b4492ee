"""
Interlayers: wrappers placed between the optimizer and the likelihood.

Every stage has the signature ``fn(params: pandas.Series, **options) -> float``
and forwards all options it does not consume to the next stage. The chain is
assembled once from explicit flags, always in this order:

    regularization -> constraints -> correlation -> base likelihood

The base likelihood is a *target* object providing::

    target(params, **options) -> float                      # negative LL sum
    target.individual(params, alpha_offset=0.0, beta_offset=0.0, **options) -> ndarray
    target.latent_rate_params(params) -> (r, s, alpha_i, beta_i)
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Sequence

import numpy as np
import pandas as pd

from ..errors import ConstraintViolation
from .transforms import NAME_COR_PARAM_M, mixing_constants, param_m_bounds

logger = logging.getLogger(__name__)

# Returned instead of a likelihood value for points outside the admissible region
INFEASIBLE_OBJECTIVE = np.inf

INTERLAYER_ORDER = ('regularization', 'constraints', 'correlation')

Objective = Callable[..., float]


@dataclass
class InterlayerConfig:
    """Explicit switches and data for every interlayer."""

    use_reg: bool = False
    reg_lambda_life: float = 0.0
    reg_lambda_trans: float = 0.0
    names_life: List[str] = field(default_factory=list)
    names_trans: List[str] = field(default_factory=list)

    use_constr: bool = False
    names_constr: List[str] = field(default_factory=list)

    use_cor: bool = False
    name_cor_param_m: str = NAME_COR_PARAM_M

    def active_layers(self) -> List[str]:
        """Names of the enabled interlayers, outermost first."""
        flags = {
            'regularization': self.use_reg,
            'constraints': self.use_constr,
            'correlation': self.use_cor,
        }
        return [name for name in INTERLAYER_ORDER if flags[name]]


def regularization_layer(
    next_fn: Objective,
    reg_lambda_life: float,
    reg_lambda_trans: float,
    names_life: Sequence[str],
    names_trans: Sequence[str]
) -> Objective:
    """
    Add an L2 penalty on the covariate coefficients.

    ``names_life`` / ``names_trans`` are parameter names as the optimizer
    sees them; a constrained coefficient appears in both lists.
    """
    names_life = list(names_life)
    names_trans = list(names_trans)

    def regularized(params: pd.Series, **options) -> float:
        penalty = (reg_lambda_life * float(np.sum(params[names_life].to_numpy() ** 2))
                   + reg_lambda_trans * float(np.sum(params[names_trans].to_numpy() ** 2)))
        return next_fn(params, **options) + penalty

    return regularized


def constrained_param_name(name_cov: str) -> str:
    return f"constr.{name_cov}"


def expand_constrained_params(params: pd.Series, names_constr: Sequence[str]) -> pd.Series:
    """Replace every ``constr.<cov>`` by equal ``life.<cov>`` and ``trans.<cov>`` entries."""
    prefixed = [constrained_param_name(name) for name in names_constr]
    expanded = params.drop(prefixed)
    for name, name_constr in zip(names_constr, prefixed):
        value = params[name_constr]
        expanded[f"life.{name}"] = value
        expanded[f"trans.{name}"] = value
    return expanded


def constraint_layer(next_fn: Objective, names_constr: Sequence[str]) -> Objective:
    """
    Tie the lifetime and transaction coefficient of each named covariate.

    The optimizer carries a single ``constr.<cov>`` parameter per constrained
    covariate; it is expanded into ``life.<cov>`` and ``trans.<cov>``.
    """
    names_constr = list(names_constr)

    def constrained(params: pd.Series, **options) -> float:
        return next_fn(expand_constrained_params(params, names_constr), **options)

    return constrained


def check_param_m(m: float, r: float, alpha_i, s: float, beta_i) -> None:
    """
    Raise ConstraintViolation if m lies outside the Sarmanov bounds.
    """
    lower, upper = param_m_bounds(r, alpha_i, s, beta_i)
    if not np.isfinite(m) or m < lower or m > upper:
        raise ConstraintViolation(f"param m = {m} outside of [{lower}, {upper}]")


def correlation_layer(target, name_cor_param_m: str = NAME_COR_PARAM_M) -> Objective:
    """
    Evaluate the correlated likelihood from four uncorrelated evaluations.

        L_cor = L00 + m A B (L11 - L10 - L01 + L00)

    where Ljk is the individual likelihood at (alpha_i + j, beta_i + k).
    Unless ``check_param_m_bounds=False`` is passed, an out-of-bounds m
    returns INFEASIBLE_OBJECTIVE without evaluating the likelihood.
    """

    def correlated(params: pd.Series, check_param_m_bounds: bool = True, **options) -> float:
        m = float(params[name_cor_param_m])
        params_no_cor = params.drop(name_cor_param_m)
        r, s, alpha_i, beta_i = target.latent_rate_params(params_no_cor)

        if check_param_m_bounds:
            try:
                check_param_m(m, r, alpha_i, s, beta_i)
            except ConstraintViolation as e:
                logger.debug(f"Rejecting parameters: {e}")
                return INFEASIBLE_OBJECTIVE

        A, B = mixing_constants(r, alpha_i, s, beta_i)
        ll_00 = target.individual(params_no_cor, **options)
        ll_10 = target.individual(params_no_cor, alpha_offset=1.0, **options)
        ll_01 = target.individual(params_no_cor, beta_offset=1.0, **options)
        ll_11 = target.individual(params_no_cor, alpha_offset=1.0, beta_offset=1.0, **options)

        with np.errstate(over='ignore', invalid='ignore'):
            mixing = 1.0 + m * A * B * (np.exp(ll_11 - ll_00) - np.exp(ll_10 - ll_00)
                                        - np.exp(ll_01 - ll_00) + 1.0)

        if not np.all(mixing > 0):
            logger.debug(f"Correlated likelihood not positive for m = {m}")
            return INFEASIBLE_OBJECTIVE

        return -float(np.sum(ll_00 + np.log(mixing)))

    return correlated


def base_layer(target) -> Objective:
    """Terminal stage: the negative log-likelihood sum of the target."""

    def base(params: pd.Series, **options) -> float:
        return target(params, **options)

    return base


def build_interlayer_pipeline(target, config: InterlayerConfig) -> Objective:
    """
    Assemble the objective from the enabled interlayers.

    Args:
        target: Likelihood target (see module docstring)
        config: Interlayer switches

    Returns:
        Callable ``fn(params: Series, **options) -> float``
    """
    wrappers = []
    if config.use_reg:
        wrappers.append(lambda fn: regularization_layer(
            fn, config.reg_lambda_life, config.reg_lambda_trans,
            config.names_life, config.names_trans
        ))
    if config.use_constr:
        wrappers.append(lambda fn: constraint_layer(fn, config.names_constr))

    if config.use_cor:
        objective = correlation_layer(target, config.name_cor_param_m)
    else:
        objective = base_layer(target)

    # Innermost wrapper is applied first so the outermost ends up first in the chain
    for wrap in reversed(wrappers):
        objective = wrap(objective)

    logger.debug(f"Interlayers in use: {config.active_layers() or 'none'}")
    return objective


def as_optimizer_objective(objective: Objective, names: Sequence[str]) -> Callable[..., float]:
    """
    Adapt a Series-based objective to the ``ndarray -> float`` form optimizers expect.

    NaN results are reported as INFEASIBLE_OBJECTIVE.
    """
    names = list(names)

    def fn(x: np.ndarray, **options) -> float:
        value = objective(pd.Series(np.asarray(x, dtype=np.float64), index=names), **options)
        if np.isnan(value):
            return INFEASIBLE_OBJECTIVE
        return float(value)

    return fn

"""
Optimization driver: minimize the interlayer objective and extract the Hessian.

The minimizer itself is ``scipy.optimize.minimize``; numerical derivatives
for the correlated model and for the Hessian come from
``statsmodels.tools.numdiff``.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import numpy as np
import pandas as pd
from scipy.optimize import minimize
from statsmodels.tools.numdiff import approx_fprime, approx_hess3

from ..errors import EstimationFailureWarning
from .interlayers import Objective, as_optimizer_objective

logger = logging.getLogger(__name__)

DEFAULT_METHOD = 'L-BFGS-B'
DEFAULT_METHOD_COR = 'Nelder-Mead'
DEFAULT_MAXITER = 5000

# Methods for which scipy uses a supplied gradient
GRADIENT_METHODS = frozenset({
    'CG', 'BFGS', 'NEWTON-CG', 'L-BFGS-B', 'TNC', 'SLSQP',
    'DOGLEG', 'TRUST-NCG', 'TRUST-KRYLOV', 'TRUST-EXACT', 'TRUST-CONSTR',
})

# Disables the correlation bound check while probing around the optimum
NO_BOUNDS_CHECK = {'check_param_m_bounds': False}


@dataclass
class OptimizerConfig:
    """Settings handed to the minimizer."""

    method: str = DEFAULT_METHOD
    maxiter: int = DEFAULT_MAXITER
    hessian: bool = True
    options: Dict = field(default_factory=dict)

    @classmethod
    def from_config(cls, estimation_config, use_cor: bool = False) -> 'OptimizerConfig':
        method = estimation_config.optimizer_method_cor if use_cor else estimation_config.optimizer_method
        return cls(method=method, maxiter=estimation_config.optimizer_maxiter)


@dataclass
class OptimizationResult:
    """Outcome of one estimation run, with parameters in optimizer space."""

    params: pd.Series
    hessian: pd.DataFrame
    converged: bool
    n_iterations: int
    n_evaluations: int
    objective_value: float
    message: str
    method: str
    used_correlation: bool = False
    reliable: bool = True

    @property
    def log_likelihood(self) -> float:
        return -self.objective_value


def no_check_gradient(fn: Callable[..., float]) -> Callable[[np.ndarray], np.ndarray]:
    """
    Central-difference gradient of ``fn`` with the correlation bound check disabled.

    Steps that cross the admissible boundary of m evaluate the likelihood
    instead of returning the infeasible penalty.
    """

    def gradient(x: np.ndarray) -> np.ndarray:
        grad = approx_fprime(np.asarray(x, dtype=np.float64), fn, kwargs=NO_BOUNDS_CHECK, centered=True)
        return np.ravel(grad)

    return gradient


def _nan_hessian(names) -> pd.DataFrame:
    return pd.DataFrame(np.full((len(names), len(names)), np.nan), index=names, columns=names)


def terminal_hessian(fn: Callable[..., float], x: np.ndarray, use_cor: bool = False) -> Optional[np.ndarray]:
    """
    Numerical Hessian of ``fn`` at ``x``, or None if it cannot be computed.
    """
    kwargs = NO_BOUNDS_CHECK if use_cor else {}
    try:
        with np.errstate(over='ignore', invalid='ignore', divide='ignore'):
            hessian = approx_hess3(np.asarray(x, dtype=np.float64), fn, kwargs=kwargs)
    except (ValueError, ArithmeticError, np.linalg.LinAlgError) as e:
        logger.warning(f"Numerical Hessian failed: {e}")
        return None
    return np.atleast_2d(hessian)


def estimate(
    objective: Objective,
    start_params: pd.Series,
    config: Optional[OptimizerConfig] = None,
    use_cor: bool = False
) -> OptimizationResult:
    """
    Minimize the objective starting from ``start_params``.

    Args:
        objective: Interlayer chain, ``fn(params: Series, **options) -> float``
        start_params: Named start values in optimizer space
        config: Minimizer settings
        use_cor: Whether the objective contains the correlation layer

    Returns:
        OptimizationResult. On non-finite estimates or a missing Hessian an
        EstimationFailureWarning is issued and the result is marked unreliable.
    """
    config = config or OptimizerConfig(method=DEFAULT_METHOD_COR if use_cor else DEFAULT_METHOD)
    names = list(start_params.index)
    fn = as_optimizer_objective(objective, names)
    x0 = start_params.to_numpy(dtype=np.float64)

    jac = None
    if use_cor and config.method.upper() in GRADIENT_METHODS:
        jac = no_check_gradient(fn)

    options = {'maxiter': config.maxiter}
    options.update(config.options)

    logger.info(f"Optimizing {len(names)} parameters with {config.method} (maxiter={config.maxiter})")
    res = minimize(fn, x0, method=config.method, jac=jac, options=options)

    coefs = pd.Series(np.asarray(res.x, dtype=np.float64), index=names)
    reliable = True
    converged = bool(res.success)
    if not converged:
        logger.warning(f"Optimizer did not report convergence: {res.message}")

    if not np.all(np.isfinite(coefs.to_numpy())):
        message = "Estimation failed with NA coefs. The returned object contains results but further usage is restricted."
        logger.warning(message)
        warnings.warn(message, EstimationFailureWarning, stacklevel=2)
        reliable = False
        hessian = _nan_hessian(names)
    elif config.hessian:
        values = terminal_hessian(fn, coefs.to_numpy(), use_cor=use_cor)
        if values is None or np.all(np.isnan(values)):
            message = "Hessian could not be derived. Setting all entries to NA."
            logger.warning(message)
            warnings.warn(message, EstimationFailureWarning, stacklevel=2)
            reliable = False
            hessian = _nan_hessian(names)
        else:
            hessian = pd.DataFrame(values, index=names, columns=names)
    else:
        hessian = _nan_hessian(names)

    result = OptimizationResult(
        params=coefs,
        hessian=hessian,
        converged=converged,
        n_iterations=int(getattr(res, 'nit', -1)),
        n_evaluations=int(getattr(res, 'nfev', -1)),
        objective_value=float(res.fun),
        message=str(res.message),
        method=config.method,
        used_correlation=use_cor,
        reliable=reliable,
    )
    logger.info(
        f"Optimization finished: objective={result.objective_value:.4f}, "
        f"iterations={result.n_iterations}, converged={result.converged}"
    )
    return result

"""
Adaptive quadrature over one finite interval per customer.

The engine knows nothing about the model: it receives an integrand
``f(y, context)`` and one immutable context object per customer. Each
integral is an independent QUADPACK QAGS call (``scipy.integrate.quad``),
so customers can be split across worker threads without sharing state.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, NamedTuple, Sequence

import numpy as np
from scipy import integrate

from ..errors import DimensionMismatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuadratureSettings:
    """
    Tolerances, workspace size and worker count for one integration call.

    ``n_workers`` splits customers over a thread pool. The integrands are
    Python callables, so ``quad`` holds the GIL while evaluating them: more
    workers give identical results but no speed-up for these integrands.
    """

    epsabs: float = 1e-8
    epsrel: float = 1e-8
    limit: int = 1000
    n_workers: int = 1

    @classmethod
    def from_config(cls, estimation_config) -> 'QuadratureSettings':
        return cls(
            epsabs=estimation_config.quad_abs_tol,
            epsrel=estimation_config.quad_rel_tol,
            limit=estimation_config.quad_limit,
            n_workers=estimation_config.integration_workers,
        )


class QuadratureEstimate(NamedTuple):
    """Result of a single adaptive integration."""

    value: float
    abserr: float
    n_evaluations: int
    converged: bool
    message: str


class QuadratureResult(NamedTuple):
    """Per-customer integrals, aligned with the input order."""

    values: np.ndarray
    abserr: np.ndarray
    converged: np.ndarray


def integrate_interval(
    integrand: Callable[..., float],
    lower: float,
    upper: float,
    args: tuple = (),
    epsabs: float = 1e-8,
    epsrel: float = 1e-8,
    limit: int = 1000
) -> QuadratureEstimate:
    """
    Integrate ``integrand`` over ``[lower, upper]`` with QAGS.

    Never raises on slow convergence: when QUADPACK stops early (workspace
    exhausted, roundoff, ...) the best estimate is returned together with
    its error bound and ``converged=False``.

    Args:
        integrand: Callable ``f(y, *args)``
        lower: Lower bound
        upper: Upper bound
        args: Extra positional arguments for the integrand
        epsabs: Absolute error tolerance
        epsrel: Relative error tolerance
        limit: Maximum number of subintervals

    Returns:
        QuadratureEstimate
    """
    if upper == lower:
        return QuadratureEstimate(0.0, 0.0, 0, True, "")

    # full_output returns the QUADPACK message instead of raising IntegrationWarning
    out = integrate.quad(
        integrand, lower, upper, args=args,
        epsabs=epsabs, epsrel=epsrel, limit=limit, full_output=1
    )
    value, abserr, info = out[0], out[1], out[2]
    message = out[3] if len(out) > 3 else ""

    return QuadratureEstimate(
        value=float(value),
        abserr=float(abserr),
        n_evaluations=int(info.get('neval', 0)),
        converged=len(out) <= 3,
        message=message,
    )


def _integrate_chunk(
    integrand: Callable[..., float],
    lower: np.ndarray,
    upper: np.ndarray,
    contexts: Sequence[Any],
    settings: QuadratureSettings
) -> List[QuadratureEstimate]:
    return [
        integrate_interval(
            integrand, lower[i], upper[i], args=(contexts[i],),
            epsabs=settings.epsabs, epsrel=settings.epsrel, limit=settings.limit
        )
        for i in range(len(contexts))
    ]


def integrate_customers(
    integrand: Callable[[float, Any], float],
    lower: np.ndarray,
    upper: np.ndarray,
    contexts: Sequence[Any],
    settings: QuadratureSettings = QuadratureSettings()
) -> QuadratureResult:
    """
    Compute one integral per customer.

    Args:
        integrand: Callable ``f(y, context)``
        lower: Lower bounds, one per customer
        upper: Upper bounds, one per customer
        contexts: Immutable per-customer integrand parameters
        settings: Tolerances, subdivision limit and number of worker threads

    Returns:
        QuadratureResult with values in input order

    Raises:
        DimensionMismatch: If bounds and contexts differ in length
    """
    lower = np.asarray(lower, dtype=np.float64)
    upper = np.asarray(upper, dtype=np.float64)
    n = len(contexts)

    if lower.shape != (n,) or upper.shape != (n,):
        raise DimensionMismatch(
            f"Need one lower and upper bound per customer: got {lower.shape}, "
            f"{upper.shape} for {n} customers"
        )

    if n == 0:
        empty = np.empty(0, dtype=np.float64)
        return QuadratureResult(empty, empty.copy(), np.empty(0, dtype=bool))

    n_workers = max(1, min(int(settings.n_workers), n))
    if n_workers == 1:
        estimates = _integrate_chunk(integrand, lower, upper, contexts, settings)
    else:
        # Contiguous chunks keep the output order trivially aligned
        bounds = np.linspace(0, n, n_workers + 1).astype(int)
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = [
                executor.submit(
                    _integrate_chunk, integrand, lower[start:end], upper[start:end],
                    contexts[start:end], settings
                )
                for start, end in zip(bounds[:-1], bounds[1:])
            ]
            estimates = [est for future in futures for est in future.result()]

    values = np.fromiter((est.value for est in estimates), dtype=np.float64, count=n)
    abserr = np.fromiter((est.abserr for est in estimates), dtype=np.float64, count=n)
    converged = np.fromiter((est.converged for est in estimates), dtype=bool, count=n)

    if not converged.all():
        first = next(est for est in estimates if not est.converged)
        logger.debug(
            f"Quadrature did not reach tolerance for {int((~converged).sum())} of {n} "
            f"customers: {first.message.strip()}"
        )

    return QuadratureResult(values, abserr, converged)

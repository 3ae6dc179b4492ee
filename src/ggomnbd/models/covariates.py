"""
Static covariates: per-customer heterogeneity parameters.

    alpha_i = alpha0 * exp(-cov_trans @ gamma_trans)
    beta_i  = beta0  * exp(-cov_life  @ gamma_life)
"""

from typing import Optional, Tuple

import numpy as np

from ..errors import DimensionMismatch

# Number of log-scale model parameters leading every parameter vector
NUM_MODEL_PARAMS = 5


def _as_matrix(covariates, n_customers: int, name: str) -> np.ndarray:
    if covariates is None:
        return np.empty((n_customers, 0), dtype=np.float64)

    matrix = np.asarray(covariates, dtype=np.float64)
    if matrix.ndim == 1:
        matrix = matrix.reshape(-1, 1)
    if matrix.ndim != 2:
        raise DimensionMismatch(f"{name} covariates must be a 2-D matrix, got {matrix.ndim}-D")
    if matrix.shape[0] != n_customers:
        raise DimensionMismatch(
            f"{name} covariates have {matrix.shape[0]} rows but there are {n_customers} customers"
        )
    return matrix


def _linear_predictor(matrix: np.ndarray, coeffs, name: str) -> np.ndarray:
    coeffs = np.atleast_1d(np.asarray(coeffs, dtype=np.float64))
    if coeffs.ndim != 1 or matrix.shape[1] != coeffs.size:
        raise DimensionMismatch(
            f"{name} covariate matrix has {matrix.shape[1]} columns but "
            f"{coeffs.size} coefficients were given"
        )
    if coeffs.size == 0:
        return np.zeros(matrix.shape[0], dtype=np.float64)
    return matrix @ coeffs


def build_heterogeneity(
    alpha0: float,
    beta0: float,
    trans_coeffs=(),
    life_coeffs=(),
    trans_covariates=None,
    life_covariates=None,
    n_customers: Optional[int] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Map baseline scale parameters and covariates to per-customer values.

    With zero covariate columns the result is a constant vector equal to
    alpha0 / beta0 for every customer.

    Args:
        alpha0: Baseline scale of the transaction-rate Gamma distribution
        beta0: Baseline scale of the lifetime Gamma distribution
        trans_coeffs: Coefficients for the transaction covariates
        life_coeffs: Coefficients for the lifetime covariates
        trans_covariates: Matrix (customers x trans covariates) or None
        life_covariates: Matrix (customers x life covariates) or None
        n_customers: Number of customers; taken from the matrices if omitted

    Returns:
        Tuple (alpha_i, beta_i) of per-customer vectors

    Raises:
        DimensionMismatch: If matrix columns and coefficients do not conform,
            or the matrices disagree on the number of customers
    """
    if n_customers is None:
        for covariates in (trans_covariates, life_covariates):
            if covariates is not None:
                n_customers = np.shape(covariates)[0]
                break
        else:
            raise DimensionMismatch("n_customers is required when no covariate matrix is given")

    m_trans = _as_matrix(trans_covariates, n_customers, "Transaction")
    m_life = _as_matrix(life_covariates, n_customers, "Lifetime")

    alpha_i = alpha0 * np.exp(-_linear_predictor(m_trans, trans_coeffs, "Transaction"))
    beta_i = beta0 * np.exp(-_linear_predictor(m_life, life_coeffs, "Lifetime"))
    return alpha_i, beta_i


def split_covariate_params(params, n_life: int, n_trans: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Split a static-covariate parameter vector by position.

    Layout: 5 log model parameters, then ``n_life`` lifetime coefficients,
    then ``n_trans`` transaction coefficients.

    Returns:
        Tuple (log_model_params, life_coeffs, trans_coeffs)
    """
    params = np.asarray(params, dtype=np.float64)
    expected = NUM_MODEL_PARAMS + n_life + n_trans
    if params.ndim != 1 or params.size != expected:
        raise DimensionMismatch(
            f"Expected {expected} parameters ({NUM_MODEL_PARAMS} model, {n_life} life, "
            f"{n_trans} trans), got {params.size}"
        )
    life_end = NUM_MODEL_PARAMS + n_life
    return params[:NUM_MODEL_PARAMS], params[NUM_MODEL_PARAMS:life_end], params[life_end:]

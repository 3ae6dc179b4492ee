"""
Maximum-likelihood estimation of the GGompertz/NBD customer-base model.
"""

from .errors import (
    ConstraintViolation,
    CustomerDataError,
    DimensionMismatch,
    DivergenceWarning,
    EstimationFailureWarning,
    GGompertzNBDError,
    GGompertzNBDModelError,
    InvalidStartParameter,
)
from .data import CustomerData, SampleDataGenerator
from .models import (
    GGompertzNBDModel,
    create_ggomnbd_model,
    fit_ggomnbd_model,
    likelihood_individual_nocov,
    likelihood_individual_staticcov,
    likelihood_sum_nocov,
    likelihood_sum_staticcov,
)

__version__ = "1.0.0"

__all__ = [
    # Model
    "GGompertzNBDModel",
    "create_ggomnbd_model",
    "fit_ggomnbd_model",
    # Likelihood
    "likelihood_individual_nocov",
    "likelihood_sum_nocov",
    "likelihood_individual_staticcov",
    "likelihood_sum_staticcov",
    # Data
    "CustomerData",
    "SampleDataGenerator",
    # Errors
    "GGompertzNBDError",
    "InvalidStartParameter",
    "DimensionMismatch",
    "CustomerDataError",
    "ConstraintViolation",
    "GGompertzNBDModelError",
    "DivergenceWarning",
    "EstimationFailureWarning",
]

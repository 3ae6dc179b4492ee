"""
GGompertz/NBD modeling module.

This module implements maximum-likelihood estimation of the
Gamma/Gompertz/Negative Binomial Distribution model, with optional static
covariates, regularization, equality constraints and a correlation between
the purchase and the attrition process.

Main Components:
- GGompertzNBDModel: Fit, inference and predictions
- Likelihood entry points for the standard and the static-covariate model
- Interlayer pipeline and optimization driver
- Factory functions for easy model creation

Example Usage:
    from ggomnbd.models import fit_ggomnbd_model

    model = fit_ggomnbd_model(cbs)
    print(model.summary())
    predictions = model.predict(periods=52)
"""

import logging

# Core model classes
from .ggomnbd import GGompertzNBDModel

# Factory functions
from .ggomnbd import create_ggomnbd_model, fit_ggomnbd_model

# Likelihood entry points
from .likelihood import (
    ggomnbd_ll_ind,
    likelihood_individual_nocov,
    likelihood_individual_staticcov,
    likelihood_sum_nocov,
    likelihood_sum_staticcov,
)

# Estimation building blocks
from .estimation import OptimizationResult, OptimizerConfig, estimate
from .interlayers import InterlayerConfig, build_interlayer_pipeline
from .quadrature import QuadratureSettings
from .variants import LikelihoodTarget, ModelVariant, NoCovariateVariant, StaticCovariateVariant

__version__ = "1.0.0"

# Public API
__all__ = [
    # Core classes
    'GGompertzNBDModel',
    'ModelVariant',
    'NoCovariateVariant',
    'StaticCovariateVariant',
    'LikelihoodTarget',

    # Factory functions
    'create_ggomnbd_model',
    'fit_ggomnbd_model',

    # Likelihood
    'ggomnbd_ll_ind',
    'likelihood_individual_nocov',
    'likelihood_sum_nocov',
    'likelihood_individual_staticcov',
    'likelihood_sum_staticcov',

    # Estimation
    'QuadratureSettings',
    'InterlayerConfig',
    'build_interlayer_pipeline',
    'OptimizerConfig',
    'OptimizationResult',
    'estimate',

    '__version__',
]

logger = logging.getLogger(__name__)
logger.debug(f"GGompertz/NBD models module initialized (version {__version__})")

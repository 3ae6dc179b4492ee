"""
Exceptions and warnings raised by the GGompertz/NBD estimation code.

Input problems are raised immediately. Numerical trouble during an
objective evaluation is reported through warnings or absorbed into
penalty values so the optimizer can keep iterating.
"""


class GGompertzNBDError(Exception):
    """Base class for all errors raised by this package."""
    pass


class InvalidStartParameter(GGompertzNBDError, ValueError):
    """A start parameter cannot be mapped into the optimizer space."""
    pass


class DimensionMismatch(GGompertzNBDError, ValueError):
    """Customer arrays, covariate matrices or coefficient vectors do not conform."""
    pass


class CustomerDataError(GGompertzNBDError, ValueError):
    """Customer summary statistics are invalid."""
    pass


class ConstraintViolation(GGompertzNBDError):
    """A parameter left its admissible region during an objective evaluation."""
    pass


class GGompertzNBDModelError(GGompertzNBDError):
    """Custom exception for GGompertz/NBD model errors."""
    pass


class DivergenceWarning(RuntimeWarning):
    """The log of the per-customer integral may be numerically unstable."""
    pass


class EstimationFailureWarning(RuntimeWarning):
    """The optimizer did not produce a usable estimate or Hessian."""
    pass

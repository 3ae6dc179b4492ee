"""
Data module for the GGompertz/NBD estimation package.

This module holds validated customer summary statistics and generates
synthetic customer bases for demonstrations and tests.
"""

from .customers import CustomerData, REQUIRED_COLUMNS

from .sample_data import SampleDataGenerator, create_sample_customers

# Convenience imports for common usage
__all__ = [
    "CustomerData",
    "REQUIRED_COLUMNS",
    "SampleDataGenerator",
    "create_sample_customers",
]

"""
Sample data generation module for the GGompertz/NBD model.

This module simulates customer bases from the model's generative process
for demonstration and testing purposes:

- purchase rate λ ~ Gamma(r, alpha_i)
- attrition rate η ~ Gamma(s, beta_i)
- lifetime τ ~ Gompertz(b, η), drawn as log(1 + E/η) / b with E ~ Exp(1)
- while alive, repeat purchases follow a Poisson process with rate λ
"""

import logging
from typing import Dict, Mapping, Optional, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class SampleDataGenerator:
    """
    Generates synthetic customer summary statistics (x, t_x, T_cal).

    Covariates are standard normal draws; a covariate named for both
    processes uses the same column.
    """

    def __init__(self, random_seed: int = 42):
        """
        Initialize the sample data generator.

        Args:
            random_seed: Random seed for reproducible data generation
        """
        self.random_seed = random_seed
        self.rng = np.random.RandomState(random_seed)

        logger.info("SampleDataGenerator initialized")

    def _covariates(self, n_customers: int, names) -> pd.DataFrame:
        return pd.DataFrame(
            {name: self.rng.standard_normal(n_customers) for name in names},
            index=range(n_customers),
        )

    def generate_customers(
        self,
        n_customers: int = 1000,
        r: float = 0.5,
        alpha: float = 10.0,
        b: float = 0.05,
        s: float = 0.5,
        beta: float = 5.0,
        T_cal: Union[float, np.ndarray] = 52.0,
        cov_life_coeffs: Optional[Mapping[str, float]] = None,
        cov_trans_coeffs: Optional[Mapping[str, float]] = None
    ) -> pd.DataFrame:
        """
        Simulate a customer base.

        Args:
            n_customers: Number of customers
            r, alpha: Shape and rate of the purchase-rate Gamma distribution
            b: Gompertz shape parameter
            s, beta: Shape and rate of the attrition-rate Gamma distribution
            T_cal: Calibration length, scalar or one value per customer
            cov_life_coeffs: Lifetime covariate coefficients keyed by covariate name
            cov_trans_coeffs: Transaction covariate coefficients keyed by covariate name

        Returns:
            DataFrame with columns Id, x, t_x, T_cal and one column per covariate
        """
        if n_customers < 1:
            raise ValueError(f"n_customers must be positive, got {n_customers}")
        if min(r, alpha, b, s, beta) <= 0:
            raise ValueError("All model parameters must be positive")

        logger.info(f"Generating {n_customers} GGompertz/NBD customers")

        cov_life_coeffs = dict(cov_life_coeffs or {})
        cov_trans_coeffs = dict(cov_trans_coeffs or {})
        names = list(dict.fromkeys(list(cov_life_coeffs) + list(cov_trans_coeffs)))
        covariates = self._covariates(n_customers, names)

        T_cal = np.broadcast_to(np.asarray(T_cal, dtype=np.float64), (n_customers,)).copy()
        if np.any(T_cal <= 0):
            raise ValueError("T_cal must be positive")

        alpha_i = np.full(n_customers, float(alpha))
        beta_i = np.full(n_customers, float(beta))
        for name, coeff in cov_trans_coeffs.items():
            alpha_i *= np.exp(-covariates[name].to_numpy() * coeff)
        for name, coeff in cov_life_coeffs.items():
            beta_i *= np.exp(-covariates[name].to_numpy() * coeff)

        lam = self.rng.gamma(shape=r, scale=1.0 / alpha_i)
        eta = self.rng.gamma(shape=s, scale=1.0 / beta_i)
        # eta can underflow to 0 for small s: such customers never churn
        with np.errstate(divide='ignore'):
            lifetime = np.log1p(self.rng.exponential(size=n_customers) / eta) / b

        active = np.minimum(lifetime, T_cal)
        x = self.rng.poisson(lam * active)
        t_x = np.array([
            self.rng.uniform(0.0, active[i], size=x[i]).max() if x[i] > 0 else 0.0
            for i in range(n_customers)
        ])

        customers = pd.DataFrame({
            'Id': np.arange(1, n_customers + 1),
            'x': x.astype(np.int64),
            't_x': t_x,
            'T_cal': T_cal,
        })
        for name in names:
            customers[name] = covariates[name].to_numpy()

        logger.info(
            f"Generated customers: repeat rate {float((x > 0).mean()):.2%}, "
            f"alive at T_cal {float((lifetime > T_cal).mean()):.2%}"
        )
        return customers

    def generate_summary(self, customers: pd.DataFrame) -> Dict:
        """Summary statistics of a simulated customer base."""
        return {
            'n_customers': len(customers),
            'repeat_rate': float((customers['x'] > 0).mean()),
            'mean_frequency': float(customers['x'].mean()),
            'mean_recency': float(customers['t_x'].mean()),
            'mean_T_cal': float(customers['T_cal'].mean()),
        }


def create_sample_customers(n_customers: int = 1000, random_seed: int = 42, **params) -> pd.DataFrame:
    """
    Convenience function to simulate a customer base.

    Args:
        n_customers: Number of customers
        random_seed: Random seed
        **params: Model parameters and covariates passed to generate_customers()

    Returns:
        DataFrame with columns Id, x, t_x, T_cal (+ covariates)
    """
    generator = SampleDataGenerator(random_seed=random_seed)
    return generator.generate_customers(n_customers=n_customers, **params)

"""
Customer summary statistics used by the GGompertz/NBD model.

Every customer is described by
- x:     number of repeat transactions in the calibration period
- t_x:   time of the last transaction
- T_cal: length of the calibration period (time since first transaction)

plus optional static covariates for the lifetime and the transaction
process. Row order is kept throughout; all model outputs align with it.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..errors import CustomerDataError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ['x', 't_x', 'T_cal']


class CustomerData:
    """Validated customer summary statistics and covariate matrices."""

    def __init__(
        self,
        x,
        t_x,
        T_cal,
        cov_life: Optional[pd.DataFrame] = None,
        cov_trans: Optional[pd.DataFrame] = None,
        ids: Optional[Sequence] = None
    ):
        """
        Initialize and validate the customer data.

        Args:
            x: Repeat transaction counts
            t_x: Time of the last transaction
            T_cal: Length of the calibration period
            cov_life: Lifetime covariates, one row per customer
            cov_trans: Transaction covariates, one row per customer
            ids: Customer identifiers (defaults to 0..n-1)

        Raises:
            CustomerDataError: If the data violates the model's requirements
        """
        self.x = np.asarray(x, dtype=np.float64).ravel()
        self.t_x = np.asarray(t_x, dtype=np.float64).ravel()
        self.T_cal = np.asarray(T_cal, dtype=np.float64).ravel()

        n = self.x.size
        if not (self.t_x.size == n and self.T_cal.size == n):
            raise CustomerDataError(
                f"x, t_x and T_cal must have the same length, got {n}, {self.t_x.size}, {self.T_cal.size}"
            )

        self.ids = pd.Index(range(n) if ids is None else list(ids), name='Id')
        if len(self.ids) != n:
            raise CustomerDataError(f"Got {len(self.ids)} ids for {n} customers")

        self.cov_life = self._covariate_frame(cov_life, "Lifetime")
        self.cov_trans = self._covariate_frame(cov_trans, "Transaction")

        self._validate()

    @property
    def n_customers(self) -> int:
        return int(self.x.size)

    @property
    def names_cov_life(self) -> List[str]:
        return [str(name) for name in self.cov_life.columns]

    @property
    def names_cov_trans(self) -> List[str]:
        return [str(name) for name in self.cov_trans.columns]

    @property
    def has_covariates(self) -> bool:
        return bool(self.cov_life.shape[1] or self.cov_trans.shape[1])

    def _covariate_frame(self, covariates: Optional[pd.DataFrame], name: str) -> pd.DataFrame:
        if covariates is None:
            return pd.DataFrame(index=self.ids)

        frame = pd.DataFrame(covariates).reset_index(drop=True)
        if len(frame) != self.x.size:
            raise CustomerDataError(
                f"{name} covariates have {len(frame)} rows but there are {self.x.size} customers"
            )
        frame.index = self.ids
        try:
            return frame.astype(np.float64)
        except (TypeError, ValueError) as e:
            raise CustomerDataError(f"{name} covariates must be numeric: {e}") from e

    def _validate(self) -> None:
        """Check the summary statistics and covariates."""
        if self.x.size == 0:
            raise CustomerDataError("Customer data is empty")

        for name in REQUIRED_COLUMNS:
            if not np.all(np.isfinite(getattr(self, name))):
                raise CustomerDataError(f"Column '{name}' contains missing or non-finite values")

        if (self.x < 0).any() or not np.all(np.mod(self.x, 1) == 0):
            raise CustomerDataError("Repeat transactions (x) must be non-negative integers")

        if (self.t_x < 0).any():
            raise CustomerDataError("Recency (t_x) values must be non-negative")

        if (self.t_x > self.T_cal).any():
            raise CustomerDataError("Recency (t_x) cannot exceed the calibration period (T_cal)")

        for name, frame in (("Lifetime", self.cov_life), ("Transaction", self.cov_trans)):
            if not np.all(np.isfinite(frame.to_numpy())):
                raise CustomerDataError(f"{name} covariates contain missing or non-finite values")

    @classmethod
    def from_dataframe(
        cls,
        data: pd.DataFrame,
        names_cov_life: Sequence[str] = (),
        names_cov_trans: Sequence[str] = (),
        id_column: Optional[str] = None
    ) -> 'CustomerData':
        """
        Build customer data from a frame with columns x, t_x, T_cal.

        Args:
            data: One row per customer
            names_cov_life: Columns used as lifetime covariates
            names_cov_trans: Columns used as transaction covariates
            id_column: Optional column with customer identifiers

        Returns:
            CustomerData instance
        """
        requested = REQUIRED_COLUMNS + list(names_cov_life) + list(names_cov_trans)
        if id_column is not None:
            requested.append(id_column)
        missing_columns = [col for col in requested if col not in data.columns]
        if missing_columns:
            raise CustomerDataError(f"Missing required columns: {missing_columns}")

        return cls(
            x=data['x'].to_numpy(),
            t_x=data['t_x'].to_numpy(),
            T_cal=data['T_cal'].to_numpy(),
            cov_life=data[list(names_cov_life)] if names_cov_life else None,
            cov_trans=data[list(names_cov_trans)] if names_cov_trans else None,
            ids=data[id_column].to_numpy() if id_column is not None else None,
        )

    def to_frame(self) -> pd.DataFrame:
        """Summary statistics and covariates as one frame indexed by customer id."""
        frame = pd.DataFrame({'x': self.x, 't_x': self.t_x, 'T_cal': self.T_cal}, index=self.ids)
        life = self.cov_life.add_prefix('life.')
        trans = self.cov_trans.add_prefix('trans.')
        return pd.concat([frame, life, trans], axis=1)

    def summary(self) -> Dict:
        """Descriptive statistics of the customer base."""
        return {
            'n_customers': self.n_customers,
            'repeat_rate': float((self.x > 0).mean()),
            'frequency': {
                'mean': float(self.x.mean()),
                'max': int(self.x.max()),
            },
            'recency_mean': float(self.t_x.mean()),
            'T_cal_mean': float(self.T_cal.mean()),
            'names_cov_life': self.names_cov_life,
            'names_cov_trans': self.names_cov_trans,
        }

    def __len__(self) -> int:
        return self.n_customers

    def __repr__(self) -> str:
        return (f"CustomerData(n_customers={self.n_customers}, "
                f"cov_life={self.names_cov_life}, cov_trans={self.names_cov_trans})")

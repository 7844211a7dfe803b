"""
Anomaly detection for bank transactions.

The workflow depends only on the AnomalyDetector contract: given snapshots
of bank transactions, return flags keyed by transaction id. The default
StatisticalAnomalyDetector uses pandas to flag amount outliers (robust
z-score on absolute amounts) and repeated date/amount/description triples.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Sequence

import numpy as np
import pandas as pd

from ledgermatch.reconciler.matcher import LedgerSnapshot
from ledgermatch.sqlModels.reconciliationEntities import AnomalySeverity
from ledgermatch.utils.parsing import normalize_text

logger = logging.getLogger("ledgermatch.reconciler.anomaly")

AMOUNT_OUTLIER = "amount_outlier"
DUPLICATE_DETECTION = "duplicate_detection"

_SEVERITY_RANK = {
    AnomalySeverity.LOW.value: 0,
    AnomalySeverity.MEDIUM.value: 1,
    AnomalySeverity.HIGH.value: 2,
    AnomalySeverity.CRITICAL.value: 3,
}


@dataclass
class AnomalyFlag:
    anomaly_type: str
    severity: str
    score: float
    reason: str


class AnomalyDetector(ABC):

    @abstractmethod
    def detect(self, transactions: Sequence[LedgerSnapshot]) -> Dict[int, AnomalyFlag]:
        """Flags keyed by transaction id. Unflagged transactions are absent."""
        pass


class StatisticalAnomalyDetector(AnomalyDetector):
    """
    Outlier and duplicate detector.

    Args:
        z_threshold: Minimum |z| for an amount to be flagged.
        min_samples: Below this many transactions no outlier test is run.
    """

    # Consistency constant relating MAD to the standard deviation
    MAD_SCALE = 0.6745

    def __init__(self, z_threshold: float = 3.0, min_samples: int = 5):
        self.z_threshold = z_threshold
        self.min_samples = min_samples

    def detect(self, transactions: Sequence[LedgerSnapshot]) -> Dict[int, AnomalyFlag]:
        if not transactions:
            return {}

        df = pd.DataFrame(
            {
                "id": [t.id for t in transactions],
                "date": [t.date for t in transactions],
                "amount": [t.amount for t in transactions],
                "description": [normalize_text(t.description) for t in transactions],
            }
        )

        flags: Dict[int, AnomalyFlag] = {}
        for txn_id, flag in self._amount_outliers(df).items():
            self._merge(flags, txn_id, flag)
        for txn_id, flag in self._duplicates(df).items():
            self._merge(flags, txn_id, flag)

        logger.info(
            "Anomaly detection completed",
            extra={"transactions": len(df), "flagged": len(flags)}
        )
        return flags

    def _merge(self, flags: Dict[int, AnomalyFlag], txn_id: int, flag: AnomalyFlag) -> None:
        current = flags.get(txn_id)
        if current is None or _SEVERITY_RANK[flag.severity] > _SEVERITY_RANK[current.severity]:
            flags[txn_id] = flag

    def _z_scores(self, values: pd.Series) -> pd.Series:
        median = values.median()
        mad = (values - median).abs().median()
        if mad > 0:
            return self.MAD_SCALE * (values - median) / mad
        std = values.std(ddof=0)
        if std and std > 0:
            return (values - values.mean()) / std
        return pd.Series(np.zeros(len(values)), index=values.index)

    def _amount_outliers(self, df: pd.DataFrame) -> Dict[int, AnomalyFlag]:
        if len(df) < self.min_samples:
            return {}

        magnitudes = df["amount"].abs()
        z = self._z_scores(magnitudes)
        flagged = df[z.abs() >= self.z_threshold]

        result: Dict[int, AnomalyFlag] = {}
        for idx, row in flagged.iterrows():
            z_value = float(abs(z.loc[idx]))
            result[int(row["id"])] = AnomalyFlag(
                anomaly_type=AMOUNT_OUTLIER,
                severity=self._severity_for(z_value),
                score=round(min(1.0, z_value / (self.z_threshold * 4)), 4),
                reason=(
                    f"Amount {abs(row['amount']):.2f} deviates from the typical "
                    f"{magnitudes.median():.2f} (z={z_value:.1f})"
                ),
            )
        return result

    def _severity_for(self, z_value: float) -> str:
        if z_value >= self.z_threshold * 4:
            return AnomalySeverity.CRITICAL.value
        if z_value >= self.z_threshold * 2:
            return AnomalySeverity.HIGH.value
        if z_value >= self.z_threshold * 4 / 3:
            return AnomalySeverity.MEDIUM.value
        return AnomalySeverity.LOW.value

    def _duplicates(self, df: pd.DataFrame) -> Dict[int, AnomalyFlag]:
        keys = ["date", "amount", "description"]
        repeated = df[df.duplicated(subset=keys, keep=False)]

        result: Dict[int, AnomalyFlag] = {}
        for _, group in repeated.groupby(keys, sort=False):
            count = len(group)
            for txn_id in group["id"]:
                result[int(txn_id)] = AnomalyFlag(
                    anomaly_type=DUPLICATE_DETECTION,
                    severity=AnomalySeverity.HIGH.value if count > 2 else AnomalySeverity.MEDIUM.value,
                    score=0.8 if count > 2 else 0.6,
                    reason=f"{count} transactions share the same date, amount and description",
                )
        return result

"""Quality scoring — weighted schema, popularity, health, and documentation signals."""
from .quality import (
    QualitySignals, QualityScore, RescoreReport,
    compute_quality_score, rescore_all, signals_for,
)

__all__ = [
    "QualitySignals", "QualityScore", "RescoreReport",
    "compute_quality_score", "rescore_all", "signals_for",
]

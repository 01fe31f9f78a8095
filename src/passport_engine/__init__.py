"""Passport-Engine: portable trust passport backend."""

from passport_engine.evidence.integrity import score_integrity
from passport_engine.trustscore.calculator import ScoreInputs, compute_score, iso_week_key

__all__ = [
    "ScoreInputs",
    "compute_score",
    "iso_week_key",
    "score_integrity",
]
__version__ = "0.1.0"

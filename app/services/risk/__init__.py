"""
Risk scoring.

Deterministic, side-effect free scoring of pipeline records into a
normalized score, a category and the evidence behind it.
"""

from app.services.risk.scorer import RiskScorer, categorize

__all__ = ["RiskScorer", "categorize"]

"""
Posterior summaries and predictive checks.

**Summaries (summarizer.py):**
- PosteriorSummarizer: mean, sd and credible interval per quantity
- check_derived_consistency: stored vs recomputed derived quantities

**Predictive checks (predictive.py):**
- PosteriorPredictiveCheck: replicated responses and p-values
"""

from posterior.summarizer import PosteriorSummarizer, QuantitySummary, check_derived_consistency
from posterior.predictive import PosteriorPredictiveCheck

__all__ = [
    "PosteriorSummarizer",
    "QuantitySummary",
    "check_derived_consistency",
    "PosteriorPredictiveCheck",
]

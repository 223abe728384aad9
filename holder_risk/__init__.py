"""
Token Holder Risk Analysis

Classifies token holder addresses and measures holder concentration:
- Exchange custody, market maker and team/vesting detection
- Label lookups with caching, rate limiting and mock fallback
- Top-N shares, HHI, Gini coefficient and whale flags
- Composite concentration risk score

Know who holds the supply before you trust the chart.
"""

__version__ = "1.0.0"

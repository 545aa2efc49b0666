"""
Providers package - Historical trade source implementations.
"""

from data_sources.providers.polymarket import PolymarketActivitySource


__all__ = [
    "PolymarketActivitySource",
]

"""Whale Sentiment Tracker.

Classifies large on-chain transfers, aggregates them into rolling windows,
computes the Smart Whale Sentiment Index (SWSI) and fires rule-based alerts.
"""

__version__ = "0.1.0"

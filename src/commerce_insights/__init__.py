"""
Commerce Insights

Cross-source commerce analytics aggregation engine: exhaustive pagination of
commerce backend collections and reconciliation of transactions, on-site
events and session analytics into dashboard metrics.
"""

__version__ = "1.0.0"

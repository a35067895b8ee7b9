"""
Merchant Assistant Router

Intent understanding and agent routing for a merchant operations assistant:
entity resolution, intent classification, query structuring, strategy
selection and per-conversation context tracking.
"""

__version__ = "0.1.0"

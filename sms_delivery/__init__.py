"""
SMS delivery reliability core.

Token bucket rate limiting, a carrier circuit breaker, a retrying delivery
pipeline with a dead letter store, and a distributed job lock for recurring
maintenance jobs.
"""

__version__ = "1.0.0"

"""ChainWise price service: shared live-price polling, staleness tracking, rate limiting."""

__version__ = "0.3.0"

"""pagebench: repeated Lighthouse audits under throttling profiles."""

__version__ = "0.1.0"

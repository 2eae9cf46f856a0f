"""Paper Writer: rate-limited literature and LLM clients for academic writing."""

__version__ = "0.1.0"

"""Covenant: compliance scoring, fining and billing engine for managed communities."""

__version__ = "0.1.0"

"""Simulated paper-trading and risk engine driven by a live price feed."""

__version__ = "0.1.0"

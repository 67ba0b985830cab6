"""Longitudinal mixed-model walkthrough on a simulated two-arm drug trial."""

__version__ = "0.1.0"

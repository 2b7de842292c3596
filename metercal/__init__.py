"""Calibration pipeline for line-protocol electricity meters."""

__version__ = "1.0.0"

"""Driving-time and rest-time compliance tracking for vehicle operators."""

__version__ = "0.3.0"

"""Welloh - educational stock-trading simulator with AI-generated analysis."""

__version__ = "0.1.0"

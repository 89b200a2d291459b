"""Titanic survival workbench: CSV repair, preprocessing, training and threshold metrics."""

__version__ = "1.0.0"

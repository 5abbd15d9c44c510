"""GPU histogram equalization pipeline."""

__version__ = "1.0.0"

"""Hive position scoring: versioned feature encoding and batched model inference."""

__version__ = "0.1.0"

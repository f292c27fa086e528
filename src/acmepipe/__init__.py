"""ACMEPIPE — ACME DNS-01 certificate lifecycle pipeline."""

__version__ = "1.0.0"

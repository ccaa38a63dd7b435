"""Tableside: dine-in, group and takeaway ordering backend."""

__version__ = "1.0.0"

"""BIOMON - crew vitals monitor with stress and panic roll resolution."""

__version__ = "0.1.0"

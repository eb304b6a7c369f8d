"""codemap: dependency graph and change-impact propagation for JS/TS projects."""

__version__ = "0.4.0"

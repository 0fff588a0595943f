"""MineChat command-line client."""

__version__ = "0.2.0"

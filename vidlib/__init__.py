"""vidlib - identity, quota and migration backend for saved video analyses."""

__version__ = "0.1.0"

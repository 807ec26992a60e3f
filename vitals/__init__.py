"""vitals: dependency health orchestration and performance metrics."""

__version__ = "0.1.0"

"""Task routing and workload balancing for development pipelines."""

__version__ = "0.1.0"

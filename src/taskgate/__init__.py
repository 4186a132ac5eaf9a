"""taskgate: confirmation-gated agent command queue and worker."""

__version__ = "0.1.0"

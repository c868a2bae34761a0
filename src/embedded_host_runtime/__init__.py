"""Host-readiness-gated initialization and resumable operation tracking."""

__version__ = "0.1.0"

__all__ = ["__version__"]

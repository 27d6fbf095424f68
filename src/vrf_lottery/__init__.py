"""VRF-driven lottery service."""

__version__ = "1.0.0"

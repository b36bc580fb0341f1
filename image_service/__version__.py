"""Version information for image-service."""

__version__ = "0.1.0"

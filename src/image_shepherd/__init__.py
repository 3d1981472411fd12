"""image-shepherd: keep a cloud image registry in sync with upstream images."""

__version__ = "0.1.0"

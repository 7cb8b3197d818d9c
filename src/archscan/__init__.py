"""archscan - multi-architecture container image size and vulnerability reporting."""

__version__ = "0.1.0"

"""Capture sources."""
from .base import CaptureSource

__all__ = ["CaptureSource"]

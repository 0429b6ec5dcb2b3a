"""Capture source contract consumed by the orchestrator."""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from ..state import CaptureFrame


@runtime_checkable
class CaptureSource(Protocol):
    def is_ready(self) -> bool:
        ...

    def grab_frame(self, quality: Optional[int] = None) -> CaptureFrame:
        """Encode the latest frame. Raises CaptureUnavailable when not ready."""
        ...

    async def activate(self, timeout: float) -> None:
        """Open the device and wait for a first frame; raises CaptureUnavailable."""
        ...

    async def deactivate(self) -> None:
        ...


__all__ = ["CaptureSource"]

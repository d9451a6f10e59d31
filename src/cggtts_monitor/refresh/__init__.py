"""Aggregate view refresh - coordinator, run gate and status board."""

from .coordinator import RefreshCoordinator, RefreshStatusBoard, RunGate

__all__ = ['RefreshCoordinator', 'RefreshStatusBoard', 'RunGate']

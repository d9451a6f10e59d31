"""Output adapters - health monitoring and manual refresh endpoint."""

from .health_server import HealthServer

__all__ = ['HealthServer']

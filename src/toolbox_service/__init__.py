"""Toolbox Service - FastAPI application for certificate and network diagnostics."""

from .main import app
from .network_probe import NetworkError

__all__ = ['app', 'NetworkError']

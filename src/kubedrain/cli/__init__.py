# src/kubedrain/cli/__init__.py
"""
KubeDrain CLI Package

This package exposes the top-level Typer `app` so tests and the console
entrypoint can import `kubedrain.cli.app`.
"""

from .main import app

__all__ = ["app"]

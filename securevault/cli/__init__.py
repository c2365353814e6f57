"""Command-line interface for SecureVault."""

from .main import app, main

__all__ = ["app", "main"]

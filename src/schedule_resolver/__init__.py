"""Layered schedule resolution and pending-approval workflow."""

__version__ = "0.1.0"

"""Reconcile Cloudflare tunnel health against a declared inventory, remediate and alert."""

__version__ = "0.1.0"

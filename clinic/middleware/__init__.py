"""ASGI middleware helpers for the progress service."""

"""Pydantic models for progress snapshots, wire bodies and scoring results."""

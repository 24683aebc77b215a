"""Schemas for pipeline state."""

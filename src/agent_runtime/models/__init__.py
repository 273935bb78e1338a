"""Pydantic models and dataclasses shared across the runtime."""

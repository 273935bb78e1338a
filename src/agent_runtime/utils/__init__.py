"""Utility helpers: logging, metrics, cancellation, workspace and interpreter lookup."""

"""Runtime bootstrap."""

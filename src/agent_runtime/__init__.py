"""
Agent Runtime - Resource orchestration for AI agent sessions
============================================================

Pooled per-session model clients, external MCP tool servers and a
confirmation-gated Python code execution harness.
"""

__version__ = "0.1.0"

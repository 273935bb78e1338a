"""
Core Module - Configuration, errors and session orchestration
=============================================================

Modules:
    constants: Settings (pydantic-settings) and module-level constants
    errors: Exception hierarchy
    model_client: ModelClient protocol and the agents-SDK backed AgentClient
    client_pool: SessionClientPool with idle eviction and save-before-release
    history_store: SQLiteSession backed history persistence
    chat_service: Streamed chat turns over pooled clients
"""

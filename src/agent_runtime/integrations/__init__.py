"""
Integrations Module - External tool servers and notifications
=============================================================

Modules:
    events: EventNotifier protocol and in-process EventBus
    mcp_registry: Server config resolution (command override, extension gating, filters)
    mcp_transport: stdio and websocket transports
    mcp_websocket_client: JSON-RPC MCP client over websockets
    mcp_client: One server connection and its registered tools
    mcp_manager: Discovery state machine over every configured server
"""

"""
Tools Module - Capabilities exposed to the model
================================================

Modules:
    base: BaseTool, ToolCallContext and the confirmation gate
    registry: ToolRegistry keyed by tool name
    python_tool: BasePythonTool harness (confirmation, dependencies, progress, results)
    code_interpreter: PythonCodeTool (execute_python)
    progress_protocol: Wrapper script and sentinel parsing
    dependencies: Missing-requirement detection and pip installs
    mcp_tool: Tools backed by an external MCP server
"""

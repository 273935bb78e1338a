"""
Prometheus metrics for the agent runtime.

Defines custom metrics for the client pool, external tool servers and the
code execution harness.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Use standard Prometheus naming conventions: namespace_subsystem_name_unit
NAMESPACE = "agent_runtime"


# ============================================================================
# Session Client Pool Metrics
# ============================================================================

pool_clients_active = Gauge(
    f"{NAMESPACE}_pool_clients_active",
    "Number of model clients currently held by the session pool",
)

pool_clients_released_total = Counter(
    f"{NAMESPACE}_pool_clients_released_total",
    "Total number of pooled clients released",
    ["reason"],  # "manual", "idle", "clear"
)

pool_save_failures_total = Counter(
    f"{NAMESPACE}_pool_save_failures_total",
    "Total number of failed history saves",
)


# ============================================================================
# MCP (Model Context Protocol) Metrics
# ============================================================================

mcp_servers_by_status = Gauge(
    f"{NAMESPACE}_mcp_servers",
    "Number of MCP server connections by status",
    ["status"],
)

mcp_discovery_duration_seconds = Histogram(
    f"{NAMESPACE}_mcp_discovery_duration_seconds",
    "Duration of a full MCP discovery pass in seconds",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

mcp_tool_calls_total = Counter(
    f"{NAMESPACE}_mcp_tool_calls_total",
    "Total number of MCP tool calls executed",
    ["tool_name", "status"],  # status: "success", "error"
)


# ============================================================================
# Code Execution Metrics
# ============================================================================

python_tool_executions_total = Counter(
    f"{NAMESPACE}_python_tool_executions_total",
    "Total number of generated-script executions",
    ["tool_name", "outcome"],  # outcome: "completed", "failed", "cancelled", "rejected"
)

python_tool_duration_seconds = Histogram(
    f"{NAMESPACE}_python_tool_duration_seconds",
    "Generated-script execution duration in seconds",
    ["tool_name"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0),
)

dependency_installs_total = Counter(
    f"{NAMESPACE}_dependency_installs_total",
    "Total number of batched dependency installs",
    ["status"],  # "success", "error"
)

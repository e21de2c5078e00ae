"""Live-data tools: MCP gateway, registry, and output formatters."""

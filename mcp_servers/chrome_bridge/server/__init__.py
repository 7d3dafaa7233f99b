"""MCP-facing pieces: tool contract, result types and log redaction."""

"""MCP server for chaos notes."""

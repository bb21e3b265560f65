"""Kubernetes MCP server: cluster tools, resources and prompts over MCP."""

__version__ = "1.0.0"

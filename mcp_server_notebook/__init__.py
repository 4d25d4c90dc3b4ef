"""MCP tool gateway exposing notebook editing and execution over JSON-RPC."""

__version__ = "0.1.0"

"""Todoist MCP server: Todoist task management exposed as MCP tools."""

__version__ = "0.1.0"

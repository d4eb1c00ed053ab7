from mcp.server.fastmcp import FastMCP

# Shared server instance. Tool modules register on it at import time.
mcp = FastMCP("todoist-mcp")

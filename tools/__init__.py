"""
Front ends: MCP tools, HTTP API and terminal dashboard.
"""
from .handlers import register_tools

__all__ = ["register_tools"]

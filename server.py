"""
Anti-Bootloop Module Manager - MCP Server
Entry point for the MCP server.
"""
import logging

from mcp.server.fastmcp import FastMCP

from core.manager import ModuleManager
from tools import register_tools
from utils.logger import setup_logging

logger = logging.getLogger(__name__)

# Create MCP server instance
mcp = FastMCP("AntiBootloopManager")


def main():
    """Main entry point for script execution."""
    setup_logging()
    manager = ModuleManager()
    register_tools(mcp, manager)
    logger.info("MCP server starting (transport: %s)", manager.transport.name)
    try:
        mcp.run()
    finally:
        manager.close()


if __name__ == "__main__":
    main()

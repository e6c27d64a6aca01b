"""Entry point for running the MCP server as a module.

This allows running the server with: python -m analytics.services.mcp_server
"""

import sys


def main() -> None:
    try:
        from analytics.services.mcp_server.main import mcp
    except ImportError as e:
        print(f"Error: Failed to import MCP server: {e}", file=sys.stderr)
        print(
            "Ensure the package is installed (pip install -e .)",
            file=sys.stderr,
        )
        sys.exit(1)
    mcp.run()


if __name__ == "__main__":
    main()

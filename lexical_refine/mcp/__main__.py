# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""Main entry point for the MCP server."""

from .server import main

if __name__ == "__main__":
    main()

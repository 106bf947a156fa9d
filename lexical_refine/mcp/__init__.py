# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
MCP (Model Context Protocol) module for Lexical Refine

This module contains the MCP server exposing editor sessions as tools.
"""

from .server import RefineMCPServer, main

__all__ = ["RefineMCPServer", "main"]

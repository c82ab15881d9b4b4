"""
Chaos MCP - a plain-text note store with an MCP server and command line.

Notes are markdown files with a small inline header (id, title, status,
tags, project) kept in a single directory, optionally versioned with git.
The package also validates PRD story documents (dependency graphs of work
items) for the backlog view.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("chaos-mcp")
except PackageNotFoundError:
    __version__ = "0.3.0"

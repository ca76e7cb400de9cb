"""
toolbridge - Bridge MCP tool servers to tool-calling language models.
"""

__version__ = "1.0.0"

"""MCPlatform OAuth proxy service."""

__version__ = "0.1.0"

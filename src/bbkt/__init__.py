"""bbkt: Bitbucket Cloud from the terminal and from MCP agents."""

__version__ = "0.1.0"

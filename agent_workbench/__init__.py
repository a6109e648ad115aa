"""
agent_workbench — local documentation search and safe, anchored file
patching for coding agents, served as JSON-line tools over stdio.
"""

__version__ = "0.3.0"

"""
.. include:: ../README.md
"""

__all__ = [
    "command",
    "component",
    "context",
    "credentials",
    "exceptions",
    "git",
    "helm",
]

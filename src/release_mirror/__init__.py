"""
Release Mirror

Mirrors GitHub release assets into object storage and maintains the JSON
index the download site is generated from.
"""

__version__ = "0.1.0"

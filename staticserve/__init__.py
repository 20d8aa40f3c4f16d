"""
staticserve - publish a directory or a single file over HTTP with caching disabled
"""

__version__ = "1.0.0"

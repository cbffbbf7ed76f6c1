"""
whynot: incremental website archiver and archive mirror server.
"""

__version__ = "0.1.0"

"""
taskchat: threaded per-task conversations with live fan-out.
"""

__version__ = "0.1.0"

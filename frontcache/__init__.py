"""
Encrypted local storage and content cache for a remotely rendered frontend.
"""

__version__ = "1.0.0"

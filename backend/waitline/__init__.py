"""
Waitline - virtual queue lifecycle and notification-timing engine.
"""
__version__ = "1.0.0"

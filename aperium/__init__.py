"""
Aperium — encrypted, per-platform installation packages.
"""

__version__ = "0.1.0"

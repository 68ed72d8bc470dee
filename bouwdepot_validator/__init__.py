"""Bouwdepot invoice validation pipeline and vendor trust engine"""

__version__ = "1.0.0"

"""
MkulimaLink offline sync and mobile-money payments.
"""

__version__ = "1.0.0"

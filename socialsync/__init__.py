"""
socialsync: multi-platform social publishing for the admin dashboard.
"""

__version__ = "1.0.0"

"""Utility modules for socialsync."""

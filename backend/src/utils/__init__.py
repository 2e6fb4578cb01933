"""
Utility modules for the booking backend.

This package contains shared helpers used across the application, currently
the UTC datetime utilities.
"""

"""
Utility modules for the ABDM integration backend.

This package contains shared helpers used across the application,
including datetime utilities.
"""

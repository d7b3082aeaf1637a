"""
AppBase content backend.

Flask service with a public, read-only query API for published content and
secret, role-gated management surfaces for Admins and Contributors.
"""

__version__ = '0.1.0'

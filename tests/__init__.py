"""
Test suite for the load generator and its demo target.

This package contains:
- unit/: Per-module tests with a fake HTTP session, no network I/O
- integration/: Target app endpoints and load runs against a live server
"""

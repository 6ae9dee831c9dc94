"""
Integration tests against the demo target service.

Tests use the Flask test client and a live HTTP server and demonstrate:
- Pinning random outcomes for deterministic status-code assertions
- Full load runs from controller and CLI to a real endpoint
"""

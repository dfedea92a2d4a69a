"""
Test suite for the load harness.

This package contains:
- unit/: fast tests using fake transports; no sockets
- integration/: full runs against a live Flask target
"""

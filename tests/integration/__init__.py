"""
Integration tests for the load harness.

Runs use the real ``requests`` transport against a Flask app served
from a background thread and demonstrate:
- Complete login-then-create iterations over HTTP
- Check failures that do not affect threshold outcomes
- CLI exit codes for passing and breaching runs
"""

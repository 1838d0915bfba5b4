# Passgate Test Suite
"""
Test suite covering:
- Challenge cache, ceremonies and the software authenticator
- Session tokens, one-time codes and login flows
- JSON handlers and the audit trail

Run with: pytest
Coverage: coverage run -m pytest && coverage report
"""

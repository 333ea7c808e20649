"""
Tests Package

This package contains all test files for the S.K.A.T.E. engine:
- Turn state machine and letter rules
- Engine transitions, idempotency and concurrency
- Judging, disputes and battle voting
- Timeout sweep
- Notification fan-out and bot handlers

Run tests with: pytest tests/
"""

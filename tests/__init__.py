"""
Quote Engine Test Suite
========================

This package contains tests for the quote engine including:
- Unit tests for money, numbering, lifecycle and the quote aggregate
- Unit tests for the SQL storage and utilities
- Integration tests for the complete quote flow over SQLite
"""

"""
Tests Package - Unit Tests

Test structure:
- tests/conftest.py - shared fixtures (settings factory, fakes)
- tests/test_*.py - one module per component

Async code is driven with asyncio.run; no broker or network is needed.
"""

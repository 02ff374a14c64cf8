"""Lending service test suite."""

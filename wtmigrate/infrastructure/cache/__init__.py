"""Caching Implementation.

Provides the append-only memo of modules known to be available.
Bounded Context: Cache Management
"""

"""Persisted credential layout."""

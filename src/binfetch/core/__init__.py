"""Resolve, fetch, verify and place."""

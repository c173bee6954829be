"""Utility helpers shared across repoaudit modules."""

"""Pydantic schemas for job arguments and the HTTP surface."""

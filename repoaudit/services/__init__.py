"""Storage and analysis services used by job handlers."""

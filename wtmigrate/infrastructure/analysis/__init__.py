"""Code analyzer implementations."""

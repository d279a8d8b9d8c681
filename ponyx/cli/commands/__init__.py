"""PONYX CLI command implementations."""

"""Command line interface for the anchoring service."""

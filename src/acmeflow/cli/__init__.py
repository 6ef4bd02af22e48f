"""Command-line interface for acmeflow."""

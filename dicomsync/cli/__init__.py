"""Command-line interface for dicomsync."""

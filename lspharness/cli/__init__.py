"""Command-line interface for lspharness."""

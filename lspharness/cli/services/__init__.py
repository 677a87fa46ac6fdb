"""Workflows behind CLI commands."""

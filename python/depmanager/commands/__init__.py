"""Auxiliary CLI commands for depmanager."""

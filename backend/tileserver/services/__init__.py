"""Tile query compilation and execution services."""

"""Bridges from concrete job runners to the lifecycle recorder."""

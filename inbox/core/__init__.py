"""Core helpers shared across the service."""

"""HTTP API of the update service."""

"""Web surface for the self-update engine."""

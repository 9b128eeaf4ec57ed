"""Learning core services."""

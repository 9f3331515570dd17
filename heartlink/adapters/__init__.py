"""Transport adapters for the heartlink services."""

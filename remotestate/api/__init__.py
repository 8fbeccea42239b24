"""HTTP API for remote state."""

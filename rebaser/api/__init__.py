"""HTTP API for the replication engine."""

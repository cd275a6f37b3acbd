"""HTTP API for reading cycles and meter reading assignments."""

"""HTTP API of the closing engine."""

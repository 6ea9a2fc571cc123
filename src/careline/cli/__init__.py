"""Command-line interface for careline-core (``careline``)."""

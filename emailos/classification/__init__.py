"""Signal detection and zone classification."""

"""Image payload helpers, asset storage and the generation backend."""

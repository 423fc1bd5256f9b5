"""Menu media service: image uploads and derivatives for the restaurant website."""

"""Archive expansion and text extraction."""

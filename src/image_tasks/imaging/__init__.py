"""Image decoding, resizing and content-addressed storage."""

"""Audio decoding, model loading and profile storage helpers."""

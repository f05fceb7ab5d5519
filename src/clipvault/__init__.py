"""clipvault: screen capture and OCR clipboard service."""

__version__ = "0.1.0"

"""Web-facing adapters for the session core."""

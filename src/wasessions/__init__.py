"""WaSessions - per-tenant WhatsApp session lifecycle management."""

__version__ = "0.3.0"

"""CARTOPS - Catering cart fulfillment and bottle reclamation."""

__version__ = "1.0.0"

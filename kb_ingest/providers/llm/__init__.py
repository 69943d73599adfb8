"""Text-generation adapters."""

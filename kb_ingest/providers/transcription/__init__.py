"""Speech-to-text adapters."""

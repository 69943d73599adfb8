"""Video caption adapters."""

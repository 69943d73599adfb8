"""Concrete adapters for the interfaces in kb_ingest.interfaces."""

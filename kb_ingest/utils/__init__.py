"""Utility modules for kb-ingest.

- **errors** -- exception hierarchy rooted at KBIngestError, each class
  carrying its user-facing message and suggested actions.
- **logging** -- structlog setup with console/JSON renderers.
- **text_sanitizer** -- control-character stripping and content-quality checks.
- **retry** -- exponential backoff with jitter for transient provider errors.
- **concurrency** -- semaphore-throttled gather and batching helpers.
"""

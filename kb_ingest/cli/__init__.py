"""Command-line tools for kb-ingest.

- ``python -m kb_ingest.cli`` (or the ``kb-ingest`` script) registers
  documents and runs pipeline stages against the SQLite and filesystem
  stores configured in ``config/config.yaml`` and the environment.
"""

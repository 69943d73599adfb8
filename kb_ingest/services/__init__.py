"""Pipeline services: extraction, chunking, embedding and summarization."""

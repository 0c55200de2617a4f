"""Core infrastructure: configuration, errors, logging, and the document store."""

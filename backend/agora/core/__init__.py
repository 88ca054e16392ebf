"""Core infrastructure: configuration, store, errors, logging."""

"""Ambient infrastructure: logging, tracing and metrics."""

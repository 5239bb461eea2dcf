"""Infrastructure helpers (tracing)."""

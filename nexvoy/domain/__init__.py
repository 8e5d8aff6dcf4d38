"""Pure booking policy logic (no I/O, no persistence)."""

"""Pure domain types for plan evaluation (no I/O)."""

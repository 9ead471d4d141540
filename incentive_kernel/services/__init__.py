"""Kernel service infrastructure (flush-only base, log capture)."""

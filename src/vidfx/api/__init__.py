"""API layer for vidfx."""

"""Utility modules for logging, numeric coercion, and date arithmetic."""

"""User messaging."""

"""Core conversion and validation components."""

"""Optional plotting helpers."""

"""Data models for the penvault note vault."""

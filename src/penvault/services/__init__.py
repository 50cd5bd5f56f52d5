"""Service layer for the penvault note vault."""

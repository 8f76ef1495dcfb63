"""Places provider client (text search and details)."""

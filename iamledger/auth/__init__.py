"""Role and permission catalogue."""

"""Authentication & authorisation core."""

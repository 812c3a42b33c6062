"""Superadmin-only user administration."""

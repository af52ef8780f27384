"""HTTP surfaces for the auth sync engine."""

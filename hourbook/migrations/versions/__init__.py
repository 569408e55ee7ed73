"""Versioned schema migrations, one module per version."""

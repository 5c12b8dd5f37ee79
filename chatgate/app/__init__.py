"""Chat gateway application package."""

"""Small helpers without package-internal dependencies."""

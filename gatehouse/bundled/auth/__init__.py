"""Bundled authentication backends: in-memory storage and JWT tokens."""

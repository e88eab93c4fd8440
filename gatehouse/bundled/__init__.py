"""Bundled implementations shipped with Gatehouse."""

"""
Test suite for the Gatehouse authentication engine.

Component tests run against the in-memory credential store, a frozen clock
and mocked OAuth providers. The security package covers timing behaviour.
"""

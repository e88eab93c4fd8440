"""
Security tests for the Gatehouse authentication engine.

These check that login failures do not leak information through response
timing and that secret comparisons are constant-time.
"""

"""
Token authority implementations for Gatehouse.

This module provides concrete implementations of the TokenService interface
for issuing, verifying, rotating and revoking authentication tokens.
"""

from .jwt_token_service import JwtTokenAuthority

__all__ = ["JwtTokenAuthority"]

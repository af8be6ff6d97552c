"""
CMS authentication.
"""

from .token_manager import AuthToken, TokenManager

__all__ = ["AuthToken", "TokenManager"]

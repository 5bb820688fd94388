############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# __init__.py: Security utilities package exports
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Security utilities for chatbridge."""

from backend.app.security.rate_limits import RateLimiter, get_rate_limiter
from backend.app.security.session_auth import AuthUser, get_auth_user, require_user

__all__ = [
    "AuthUser",
    "RateLimiter",
    "get_auth_user",
    "get_rate_limiter",
    "require_user",
]

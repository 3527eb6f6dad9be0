"""
Security module for the Dishola search service.
Provides rate limiting and input validation.
"""

from .abuse_protection import AbuseProtection, RateLimiter, RateLimitConfig, InputValidator, SecurityConfig

__all__ = [
    'AbuseProtection',
    'RateLimiter',
    'RateLimitConfig',
    'InputValidator',
    'SecurityConfig'
]

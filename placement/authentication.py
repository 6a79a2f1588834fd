"""
Token authentication for the placement API.

Kept in its own module so that ``REST_FRAMEWORK`` settings can import
it without pulling in any view code.  Tokens are issued by
``manage.py ensure_test_users`` or through the admin.
"""
from __future__ import annotations

from rest_framework import authentication, exceptions


class TokenAuthentication(authentication.TokenAuthentication):
    """``Authorization: Token <key>``; users without a workflow role are refused."""

    keyword = 'Token'

    def authenticate_credentials(self, key):
        user, token = super().authenticate_credentials(key)
        if not getattr(user, 'role', None):
            raise exceptions.AuthenticationFailed('User has no role.')
        return user, token

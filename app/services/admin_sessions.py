"""
Static bearer tokens for the admin dashboard when Supabase Auth is not configured.
"""
from typing import Dict, Optional


def parse_static_tokens(raw: str) -> Dict[str, str]:
    """Parse 'token1:tenant-a,token2:tenant-b' into {token: tenant_id}."""
    tokens = {}
    for pair in (raw or "").split(","):
        token, sep, tenant_id = pair.strip().partition(":")
        if sep and token and tenant_id:
            tokens[token.strip()] = tenant_id.strip()
    return tokens


class AdminSessionStore:
    """Maps configured bearer tokens to tenant ids."""

    def __init__(self, static_tokens: Optional[Dict[str, str]] = None):
        self._tokens = dict(static_tokens or {})

    def resolve(self, token: str) -> Optional[str]:
        return self._tokens.get(token)

"""Server-side PKCE verifier storage in Redis, keyed by the OAuth state nonce."""

import redis.asyncio as redis

from workblock.config import get_settings

_KEY_PREFIX = "calendar:pkce:"


class VerifierStore:
    def __init__(self, client: redis.Redis | None = None) -> None:
        settings = get_settings()
        self.client = client or redis.from_url(settings.redis_url, decode_responses=True)
        self.ttl_seconds = settings.oauth_state_ttl_seconds

    async def put(self, nonce: str, code_verifier: str) -> None:
        await self.client.set(f"{_KEY_PREFIX}{nonce}", code_verifier, ex=self.ttl_seconds, nx=True)

    async def pop(self, nonce: str) -> str | None:
        """Return the verifier and forget it, so a state can only be redeemed once."""
        value = await self.client.getdel(f"{_KEY_PREFIX}{nonce}")
        if isinstance(value, bytes):
            return value.decode()
        return value


_store: VerifierStore | None = None


def get_verifier_store() -> VerifierStore:
    global _store
    if _store is None:
        _store = VerifierStore()
    return _store

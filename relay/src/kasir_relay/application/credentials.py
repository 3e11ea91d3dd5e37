"""Terminal credential verification against an allow-list and a secret digest."""

from __future__ import annotations

import hmac
from collections.abc import Callable, Iterable
from hashlib import sha256


def sha256_hex(secret: str) -> str:
    return sha256(secret.encode("utf-8")).hexdigest()


class CredentialVerifier:
    """Checks a claimed ``kasir_id`` and shared secret.

    Either half is optional: without an allow-list every identifier is
    accepted, and without a configured digest the secret is not checked.
    The raw secret is never stored; only digests are compared, in constant
    time.
    """

    def __init__(
        self,
        *,
        allowed_ids: Iterable[str] | None = None,
        secret_digest: str | None = None,
        hash_fn: Callable[[str], str] | None = None,
    ) -> None:
        self._allowed = frozenset(allowed_ids) if allowed_ids is not None else None
        self._digest = secret_digest.strip().lower() if secret_digest else None
        self._hash = hash_fn or sha256_hex

    @property
    def requires_secret(self) -> bool:
        return self._digest is not None

    def is_allowed(self, kasir_id: str | None) -> bool:
        if not kasir_id:
            return False
        return self._allowed is None or kasir_id in self._allowed

    def verify(self, kasir_id: str | None, secret: str | None) -> bool:
        if not self.is_allowed(kasir_id):
            return False
        if self._digest is None:
            return True
        if not secret:
            return False
        presented = self._hash(secret).lower()
        return hmac.compare_digest(presented.encode("utf-8"), self._digest.encode("utf-8"))


__all__ = ["CredentialVerifier", "sha256_hex"]

"""Signing credential lookup."""

from __future__ import annotations

import logging
import re
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from ...config import settings
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def normalize_private_key(raw: str) -> str:
    key = (raw or "").strip()
    if key.startswith(("0x", "0X")):
        key = key[2:]
    if not _KEY_RE.fullmatch(key):
        raise ConfigurationError("Signing key must be 32 bytes of hex", missing=["SIGNING_PRIVATE_KEY"])
    return "0x" + key.lower()


class KeyStore:
    """Resolves the signer for a wallet address.

    Only one key is configured; it signs for the address it derives to and
    for nothing else.
    """

    def __init__(self, private_key: Optional[str] = None) -> None:
        raw = private_key if private_key is not None else settings.signing_private_key
        self._account: Optional[LocalAccount] = None
        if raw:
            self._account = Account.from_key(normalize_private_key(raw))

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account else None

    def signer_for(self, user_address: str) -> Optional[LocalAccount]:
        if self._account is None:
            return None
        if self._account.address.lower() != (user_address or "").lower():
            logger.warning(
                "No signing key for %s (configured key signs for %s)",
                user_address,
                self._account.address,
            )
            return None
        return self._account

"""Local signers.

LocalSigner keeps a private key in memory. Suitable for a hot wallet holding
only the capital at risk in arbitrage routes.
"""

import hashlib
import logging
from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct

from hoparb.errors import SigningError
from hoparb.signing.base import Signer, canonical_json

logger = logging.getLogger(__name__)


class LocalSigner(Signer):
    """secp256k1 signer backed by eth-account."""

    def __init__(self, private_key: str, address: str = ""):
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise SigningError("Invalid private key") from e
        self._address = address or self._account.address

    @property
    def address(self) -> str:
        return self._address

    async def sign_payload(self, payload: dict[str, Any]) -> str:
        message = encode_defunct(text=canonical_json(payload))
        try:
            signed = self._account.sign_message(message)
        except Exception as e:
            logger.error(f"Local signing failed: {e}")
            raise SigningError(str(e)) from e
        return signed.signature.hex()


class DryRunSigner(Signer):
    """Deterministic digest signer for the simulated venue."""

    def __init__(self, address: str = "dry-run-wallet"):
        self._address = address

    @property
    def address(self) -> str:
        return self._address

    async def sign_payload(self, payload: dict[str, Any]) -> str:
        return hashlib.sha256(canonical_json(payload).encode()).hexdigest()

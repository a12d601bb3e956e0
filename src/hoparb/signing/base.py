"""Signing interface for swap payloads.

Signing flow:
1. Venue builds the swap payload
2. Payload is serialized canonically (sorted keys, no whitespace)
3. Signer returns a signature; private keys never leave the signer
4. Venue attaches the signature and submits
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)


def canonical_json(payload: dict[str, Any]) -> str:
    """Serialize a payload the same way on every signer."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


class Signer(ABC):
    """Abstract base class for payload signers."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Wallet address the signatures belong to."""
        pass

    @abstractmethod
    async def sign_payload(self, payload: dict[str, Any]) -> str:
        """Sign a swap payload.

        Args:
            payload: JSON-serializable swap payload

        Returns:
            Hex signature

        Raises:
            SigningError: Payload could not be signed
        """
        pass

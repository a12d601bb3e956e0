"""Swap payload signing."""

from typing import Optional

from hoparb.config import Settings, get_settings
from hoparb.signing.base import Signer, canonical_json
from hoparb.signing.local import DryRunSigner, LocalSigner


def create_signer(settings: Optional[Settings] = None) -> Signer:
    """Create the signer for the configured wallet.

    Falls back to DryRunSigner when no key is configured.
    """
    settings = settings or get_settings()
    if settings.wallet_private_key:
        return LocalSigner(settings.wallet_private_key, settings.wallet_address)
    return DryRunSigner(settings.wallet_address or "dry-run-wallet")


__all__ = ["DryRunSigner", "LocalSigner", "Signer", "canonical_json", "create_signer"]

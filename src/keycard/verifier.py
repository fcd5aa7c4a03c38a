# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""Card signature verification.

:class:`CardVerifier` decides whether a :class:`~types.Card` carries the
signatures a caller requires:

- the **self** signature, made with the private key matching the card's own
  public key;
- the **authority** signature, appended by the card service on publish;
- for each configured whitelist, a valid signature from at least one of the
  whitelisted signers.

Verification never raises on a bad signature; it returns ``False``.
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol, Sequence

from .cards import AUTHORITY_SIGNER, SELF_SIGNER
from .crypto import CardCrypto
from .snapshot import decode_base64
from .types import Card, VerifierCredentials

# Public key of the card service, used for the authority signature.
AUTHORITY_PUBLIC_KEY_BASE64 = "MCowBQYDK2VwAyEAljOYGANYiVq1WbvVvoYIKtvZi2ji9bAhxyu6iV/LF8M="

Whitelist = Sequence[VerifierCredentials]


class CardVerifierProtocol(Protocol):
    def verify_card(self, card: Card) -> bool: ...


class CardVerifier:
    """Validates cards by checking their signatures.

    Parameters
    ----------
    crypto:
        Backend used to import keys and verify signatures.
    verify_self_signature:
        Require a valid ``"self"`` signature. Defaults to ``True``.
    verify_authority_signature:
        Require a valid ``"virgil"`` signature from the card service.
        Defaults to ``True``.
    authority_public_key_base64:
        Overrides the card service public key, e.g. for a staging service.
    whitelists:
        Each whitelist must be satisfied by at least one of its signers.

    Raises
    ------
    KeycardError
        If the authority key or a whitelisted key cannot be decoded.
    """

    def __init__(
        self,
        crypto: CardCrypto,
        *,
        verify_self_signature: bool = True,
        verify_authority_signature: bool = True,
        authority_public_key_base64: str = AUTHORITY_PUBLIC_KEY_BASE64,
        whitelists: Iterable[Whitelist] = (),
    ) -> None:
        self._crypto = crypto
        self.verify_self_signature = verify_self_signature
        self.verify_authority_signature = verify_authority_signature
        self.whitelists = [list(whitelist) for whitelist in whitelists]
        # One list of (signer, public key) pairs per whitelist.
        self._whitelist_keys = [
            [
                (cred.signer, crypto.import_public_key(decode_base64(cred.public_key_base64)))
                for cred in whitelist
            ]
            for whitelist in self.whitelists
        ]
        self.authority_public_key = crypto.import_public_key(
            decode_base64(authority_public_key_base64)
        )

    def verify_card(self, card: Card) -> bool:
        """Return ``True`` if every required signature is present and valid."""
        if self.verify_self_signature and not self._validate_signer_signature(
            card, card.public_key, SELF_SIGNER
        ):
            return False

        if self.verify_authority_signature and not self._validate_signer_signature(
            card, self.authority_public_key, AUTHORITY_SIGNER
        ):
            return False

        signers = {s.signer for s in card.signatures}
        for whitelist in self._whitelist_keys:
            present = [(signer, key) for signer, key in whitelist if signer in signers]
            if not present:
                return False
            if not any(
                self._validate_signer_signature(card, key, signer) for signer, key in present
            ):
                return False

        return True

    def _validate_signer_signature(self, card: Card, public_key: Any, signer: str) -> bool:
        signature = next((s for s in card.signatures if s.signer == signer), None)
        if signature is None:
            return False

        signed = card.content_snapshot + (signature.snapshot or b"")
        return self._crypto.verify_signature(signed, signature.signature, public_key)

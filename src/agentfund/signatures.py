"""
agentfund.signatures — Recover the wallet that signed a challenge.

The auth protocol only needs one capability: given ``(message, signature)``,
return the signer's wallet address or fail. Two schemes are provided:

- ``ethereum``: EIP-191 ``personal_sign`` over the challenge text, the same
  thing browser wallets produce. Recovery via eth-account.
- ``ed25519``: a detached Ed25519 signature bundled with its public key as
  ``"<pubkey_hex>:<signature_hex>"``. The wallet address is derived from the
  public key, so holding the key is the only way to produce it.
"""

import hashlib
from typing import Optional, Protocol

from eth_account import Account
from eth_account.messages import encode_defunct
from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from agentfund.errors import InvalidSignature

ED25519_PREFIX = "ed25519:"


class SignatureVerifier(Protocol):
    scheme: str

    def recover(self, message: str, signature: str) -> str:
        """Return the lower-cased signer address, or raise InvalidSignature."""
        ...


# ─── Ethereum ──────────────────────────────────────────────────────

class EthereumVerifier:
    scheme = "ethereum"

    def recover(self, message: str, signature: str) -> str:
        if not signature:
            raise InvalidSignature("Empty signature.")
        try:
            address = Account.recover_message(encode_defunct(text=message), signature=signature)
        except Exception as e:
            raise InvalidSignature(f"Could not recover signer: {type(e).__name__}") from e
        return address.lower()


# ─── Ed25519 ───────────────────────────────────────────────────────

def ed25519_address(verify_key: VerifyKey) -> str:
    """Derive a wallet address from an Ed25519 public key."""
    pubkey_hex = verify_key.encode(encoder=HexEncoder).decode()
    return ED25519_PREFIX + hashlib.sha256(pubkey_hex.encode()).hexdigest()[:40]


class Ed25519Verifier:
    scheme = "ed25519"

    def recover(self, message: str, signature: str) -> str:
        pubkey_hex, sep, sig_hex = (signature or "").partition(":")
        if not sep or not pubkey_hex or not sig_hex:
            raise InvalidSignature("Expected '<pubkey_hex>:<signature_hex>'.")
        try:
            vk = VerifyKey(pubkey_hex.encode(), encoder=HexEncoder)
            vk.verify(message.encode(), bytes.fromhex(sig_hex))
        except (BadSignatureError, ValueError, TypeError) as e:
            raise InvalidSignature(f"Signature verification failed: {type(e).__name__}") from e
        return ed25519_address(vk)


class Ed25519Wallet:
    """Client-side Ed25519 keypair able to answer sign-in challenges."""

    def __init__(self, signing_key: Optional[SigningKey] = None):
        self.signing_key = signing_key or SigningKey.generate()
        self.verify_key = self.signing_key.verify_key

    @property
    def address(self) -> str:
        return ed25519_address(self.verify_key)

    @property
    def public_key_hex(self) -> str:
        return self.verify_key.encode(encoder=HexEncoder).decode()

    def sign_challenge(self, challenge: str) -> str:
        sig = self.signing_key.sign(challenge.encode()).signature
        return f"{self.public_key_hex}:{sig.hex()}"


_VERIFIERS = {
    EthereumVerifier.scheme: EthereumVerifier,
    Ed25519Verifier.scheme: Ed25519Verifier,
}


def get_verifier(scheme: str = "ethereum") -> SignatureVerifier:
    try:
        return _VERIFIERS[scheme]()
    except KeyError:
        raise ValueError(
            f"Unknown signature scheme {scheme!r}. Supported: {sorted(_VERIFIERS)}"
        ) from None


__all__ = [
    "SignatureVerifier",
    "EthereumVerifier",
    "Ed25519Verifier",
    "Ed25519Wallet",
    "ed25519_address",
    "get_verifier",
]

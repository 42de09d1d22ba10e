"""
NIP-04 encryption and Nostr event signing for the NWC gateway.

coincurve (libsecp256k1) provides ECDH and Schnorr signatures,
PyCryptodome provides AES-256-CBC.
"""

from __future__ import annotations

import hashlib
import json
import os
from base64 import b64decode, b64encode
from typing import Any, Dict

from coincurve import PrivateKey, PublicKey
from Crypto.Cipher import AES
from Crypto.Util.Padding import pad, unpad


def x_only_public_key(private_key_hex: str) -> str:
    """Derive the 32-byte x-only public key (hex) used as a Nostr pubkey."""
    compressed = PrivateKey(bytes.fromhex(private_key_hex)).public_key.format(compressed=True)
    return compressed[1:].hex()


class Nip04Cipher:
    """
    AES-256-CBC cipher keyed by the ECDH shared secret of two Nostr keys.

    The shared secret is derived once per peer and reused for every message.
    """

    def __init__(self, private_key_hex: str, peer_public_key_hex: str):
        # Nostr pubkeys are x-only; assume the even-y point
        peer = PublicKey(b"\x02" + bytes.fromhex(peer_public_key_hex))
        point = peer.multiply(bytes.fromhex(private_key_hex))
        self._key = point.format(compressed=True)[1:]

    def encrypt(self, plaintext: str) -> str:
        """Return "<base64 ciphertext>?iv=<base64 iv>"."""
        iv = os.urandom(16)
        cipher = AES.new(self._key, AES.MODE_CBC, iv)
        ciphertext = cipher.encrypt(pad(plaintext.encode("utf-8"), AES.block_size))
        return f"{b64encode(ciphertext).decode('ascii')}?iv={b64encode(iv).decode('ascii')}"

    def decrypt(self, payload: str) -> str:
        parts = payload.split("?iv=")
        if len(parts) != 2:
            raise ValueError("Invalid NIP-04 ciphertext format (expected '...?iv=...')")
        cipher = AES.new(self._key, AES.MODE_CBC, b64decode(parts[1]))
        return unpad(cipher.decrypt(b64decode(parts[0])), AES.block_size).decode("utf-8")


def sign_event(event: Dict[str, Any], private_key_hex: str) -> Dict[str, Any]:
    """Fill in the NIP-01 id and Schnorr sig of an event."""
    serialized = json.dumps(
        [0, event["pubkey"], event["created_at"], event["kind"], event["tags"], event["content"]],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    digest = hashlib.sha256(serialized.encode("utf-8")).digest()
    signed = dict(event)
    signed["id"] = digest.hex()
    signed["sig"] = PrivateKey(bytes.fromhex(private_key_hex)).sign_schnorr(digest).hex()
    return signed

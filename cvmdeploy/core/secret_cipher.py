"""
Secret Cipher

Encrypts environment variables for a CVM using an ephemeral X25519 key
agreement and AES-256-GCM.

Wire format (hex encoded):
    ephemeral_public_key (32) || nonce (12) || ciphertext || tag (16)

The raw X25519 shared secret is used directly as the AES key. The CVM side
decrypts with exactly this construction, so no KDF is applied.
"""

import json
import os
from typing import List

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cvmdeploy.constants import NONCE_LENGTH, PUBLIC_KEY_LENGTH, TAG_LENGTH
from cvmdeploy.exceptions import CryptoError
from cvmdeploy.models.secrets import EnvVar
from cvmdeploy.utils import strip_hex_prefix


def serialize_env_vars(env_vars: List[EnvVar]) -> bytes:
    """Compact JSON payload, keys in the given order."""
    payload = {"env": [env.to_dict() for env in env_vars]}
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def decode_public_key(remote_pubkey_hex: str) -> X25519PublicKey:
    """
    Decode a hex X25519 public key, with or without a 0x prefix.

    Raises:
        CryptoError: If the value is not 32 bytes of hex
    """
    if not isinstance(remote_pubkey_hex, str) or not remote_pubkey_hex.strip():
        raise CryptoError("Remote public key is empty")

    try:
        raw = bytes.fromhex(strip_hex_prefix(remote_pubkey_hex))
    except ValueError as e:
        raise CryptoError("Remote public key is not valid hex", context=str(e)) from e

    if len(raw) != PUBLIC_KEY_LENGTH:
        raise CryptoError(
            f"Remote public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(raw)}"
        )
    return X25519PublicKey.from_public_bytes(raw)


def encrypt_env_vars(env_vars: List[EnvVar], remote_pubkey_hex: str) -> str:
    """
    Encrypt environment variables for the holder of remote_pubkey_hex.

    Args:
        env_vars: Variables to encrypt
        remote_pubkey_hex: CVM public key (hex, optional 0x prefix)

    Returns:
        Hex encoded payload

    Raises:
        CryptoError: If the public key is malformed or a low-order point
    """
    remote_key = decode_public_key(remote_pubkey_hex)
    plaintext = serialize_env_vars(env_vars)

    ephemeral_key = X25519PrivateKey.generate()
    try:
        shared_secret = ephemeral_key.exchange(remote_key)
    except (ValueError, InvalidKey) as e:
        raise CryptoError(
            "Key agreement with remote public key failed", context=str(e)
        ) from e

    nonce = os.urandom(NONCE_LENGTH)
    ciphertext = AESGCM(shared_secret).encrypt(nonce, plaintext, None)

    ephemeral_public = ephemeral_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return (ephemeral_public + nonce + ciphertext).hex()


def encrypted_length(plaintext_length: int) -> int:
    """Byte length of a payload for a plaintext of the given size."""
    return PUBLIC_KEY_LENGTH + NONCE_LENGTH + plaintext_length + TAG_LENGTH

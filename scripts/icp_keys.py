"""Shared ICP key utilities.

An identity is derived the way ICP wallets do it: 128 bits of entropy become a
12 word BIP39 mnemonic, the mnemonic is stretched to a seed, and the seed is
walked down m/44'/223'/0'/0/0 with BIP32. The resulting secp256k1 key is
turned into a self-authenticating principal.
"""

import base64
import hashlib
import os
import zlib
from dataclasses import dataclass

from embit import bip32
from embit.base import EmbitError
from mnemonic import Mnemonic
from secp256k1 import PrivateKey as SecpPrivateKey

DERIVATION_PATH = "m/44h/223h/0h/0/0"
ENTROPY_BYTES = 16

# RFC 4648 base32, lower case, no padding
PRINCIPAL_ALPHABET = "abcdefghijklmnopqrstuvwxyz234567"
PRINCIPAL_GROUP = 5
MAX_PRINCIPAL_TEXT = 63

SELF_AUTHENTICATING_TAG = b"\x02"

# SubjectPublicKeyInfo header for an uncompressed secp256k1 key:
# SEQUENCE { SEQUENCE { id-ecPublicKey, secp256k1 }, BIT STRING }
SECP256K1_DER_PREFIX = bytes.fromhex(
    "3056301006072a8648ce3d020106052b8104000a034200"
)


class IcpKeyError(Exception):
    """Base class for identity generation failures."""


class EntropySourceError(IcpKeyError):
    """The secure random source could not deliver entropy."""


class EncodingError(IcpKeyError):
    """Mnemonic or principal encoding received malformed input."""


class DerivationError(IcpKeyError):
    """BIP32 derivation produced no usable key for this attempt."""


@dataclass(frozen=True)
class Identity:
    principal: str
    mnemonic: str
    secret_key: bytes


def pubkey_from_privbytes(priv_bytes: bytes) -> bytes:
    """Derive the uncompressed public key (65 bytes) from private key bytes."""
    priv = SecpPrivateKey(priv_bytes)
    return priv.pubkey.serialize(compressed=False)


def der_encode_pubkey(pub_bytes: bytes) -> bytes:
    if len(pub_bytes) != 65 or pub_bytes[0] != 0x04:
        raise EncodingError("expected a 65 byte uncompressed secp256k1 public key")
    return SECP256K1_DER_PREFIX + pub_bytes


def self_authenticating_principal(der_pubkey: bytes) -> bytes:
    return hashlib.sha224(der_pubkey).digest() + SELF_AUTHENTICATING_TAG


def principal_to_text(raw: bytes) -> str:
    """Encode principal bytes in the textual form, e.g. ``aaaaa-aa``.

    The text is base32 over CRC32(raw) || raw, split into groups of five.
    """
    checksum = (zlib.crc32(raw) & 0xFFFFFFFF).to_bytes(4, "big")
    encoded = base64.b32encode(checksum + raw).decode("ascii").lower().rstrip("=")
    return "-".join(
        encoded[i:i + PRINCIPAL_GROUP] for i in range(0, len(encoded), PRINCIPAL_GROUP)
    )


def principal_from_text(text: str) -> bytes:
    """Decode and verify a textual principal, returning the raw bytes."""
    compact = text.replace("-", "")
    for ch in compact:
        if ch not in PRINCIPAL_ALPHABET:
            raise EncodingError(f"'{ch}' is not a valid principal character")
    padded = compact.upper() + "=" * (-len(compact) % 8)
    try:
        decoded = base64.b32decode(padded)
    except ValueError as exc:
        raise EncodingError(f"invalid principal text: {text}") from exc
    if len(decoded) < 4:
        raise EncodingError(f"principal text too short: {text}")

    checksum, raw = decoded[:4], decoded[4:]
    if (zlib.crc32(raw) & 0xFFFFFFFF).to_bytes(4, "big") != checksum:
        raise EncodingError(f"principal checksum mismatch: {text}")
    if principal_to_text(raw) != text:
        raise EncodingError(f"principal text is not canonical: {text}")
    return raw


def principal_from_privbytes(priv_bytes: bytes) -> str:
    der = der_encode_pubkey(pubkey_from_privbytes(priv_bytes))
    return principal_to_text(self_authenticating_principal(der))


def derive_privbytes(seed: bytes, path: str = DERIVATION_PATH) -> bytes:
    """Derive the private key bytes at ``path`` from a BIP39 seed."""
    try:
        root = bip32.HDKey.from_seed(seed)
        child = root.derive(path)
    except (EmbitError, ValueError) as exc:
        raise DerivationError(f"cannot derive {path}: {exc}") from exc
    return child.key.serialize()


class IdentityFactory:
    """Produces fresh identities.

    Every stage is a swappable capability so tests can pin the entropy or
    replace the expensive crypto with fakes:

    - ``random_source(n)`` returns ``n`` secure random bytes
    - ``codec`` offers ``to_mnemonic``, ``to_seed``, ``to_entropy`` and
      ``check`` like :class:`mnemonic.Mnemonic`
    - ``deriver(seed)`` returns private key bytes at the ICP path
    - ``encoder(priv_bytes)`` returns the principal text
    """

    def __init__(self, random_source=None, codec=None, deriver=None, encoder=None):
        self.random_source = random_source if random_source is not None else os.urandom
        self.codec = codec if codec is not None else Mnemonic("english")
        self.deriver = deriver or derive_privbytes
        self.encoder = encoder or principal_from_privbytes

    def _entropy(self) -> bytes:
        try:
            entropy = self.random_source(ENTROPY_BYTES)
        except (OSError, NotImplementedError) as exc:
            raise EntropySourceError(f"secure random source unavailable: {exc}") from exc
        if len(entropy) != ENTROPY_BYTES:
            raise EntropySourceError(
                f"random source returned {len(entropy)} bytes, expected {ENTROPY_BYTES}"
            )
        return entropy

    def _derive(self, words: str) -> Identity:
        seed = self.codec.to_seed(words, passphrase="")
        priv_bytes = self.deriver(seed)
        return Identity(self.encoder(priv_bytes), words, priv_bytes)

    def create(self) -> Identity:
        entropy = self._entropy()
        try:
            words = self.codec.to_mnemonic(entropy)
        except ValueError as exc:
            raise EncodingError(f"cannot encode entropy as mnemonic: {exc}") from exc
        return self._derive(words)

    def from_mnemonic(self, words: str) -> Identity:
        """Re-derive the identity behind an existing mnemonic."""
        words = " ".join(words.split())
        if not self.codec.check(words):
            raise EncodingError("invalid BIP39 seed phrase (checksum failed)")
        return self._derive(words)


_default_factory = None


def _factory() -> IdentityFactory:
    global _default_factory
    if _default_factory is None:
        _default_factory = IdentityFactory()
    return _default_factory


def generate_identity() -> Identity:
    """Generate a random identity with its mnemonic and secret key."""
    return _factory().create()


def identity_from_mnemonic(words: str) -> Identity:
    return _factory().from_mnemonic(words)


def format_identity(identity: Identity, show_secret: bool = False):
    """Print an identity; the secret key only when asked for."""
    print(f"Principal: {identity.principal}")
    print(f"Mnemonic:  {identity.mnemonic}")
    if show_secret:
        print(f"Secret key (hex): {identity.secret_key.hex()}")

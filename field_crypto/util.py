#!/usr/bin/env python3
#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""AES-256 encryption/decryption of string fields"""

from typing import Any, Optional, cast
from types import ModuleType

import re
import binascii
from Cryptodome.Protocol.KDF import PBKDF2
from Cryptodome.Hash import SHA256
from Cryptodome.Cipher import AES
from Cryptodome.Cipher._mode_gcm import GcmMode
from Cryptodome.Random import get_random_bytes
from base64 import b64encode, b64decode

from .exceptions import (
    EncryptOperationError,
    DecryptOperationError,
    BadEnvelopeError,
    KeyDerivationError,
  )

from .constants import (
    KEY_SIZE_BYTES,
    TAG_SIZE_BYTES,
    NONCE_SIZE_BYTES,
    PBKDF2_COUNT,
    KEY_SALT,
    ENVELOPE_PREFIX,
    LEGACY_MIN_LENGTH,
    LEGACY_ALPHABET_PATTERN,
  )

PBKDF2_HASH_MODULE: ModuleType = SHA256
"""Type of hash used to generate AES key from the key seed"""

_legacy_re = re.compile(LEGACY_ALPHABET_PATTERN)

def generate_nonce(n_bytes: int=NONCE_SIZE_BYTES) -> bytes:
  """Generate a cryptographically random IV.

  Args:
      n_bytes (int, optional): The number of bytes to generate. Default is 12.

  Returns:
      bytes: n_bytes cryptographically random bytes
  """
  return get_random_bytes(n_bytes)

def generate_key() -> bytes:
  """Generate a cryptographically random 256-bit AES key.

  Returns:
      bytes: a cryptographically random 256-bit (32-byte) key
  """
  return get_random_bytes(KEY_SIZE_BYTES)

def generate_key_from_seed(
      seed: str,
      salt: bytes=KEY_SALT,
      pbkdf2_count: Optional[int]=None,
      key_size_bytes: int=KEY_SIZE_BYTES,
      hmac_hash_module: ModuleType=PBKDF2_HASH_MODULE
    ) -> bytes:
  """Generate a deterministic AES-256 key from a key seed string.

  The seed is only ever used as PBKDF2 input; it is never used directly as key material.

  Args:
      seed (str):           The key seed, normally "{app_name}-{hostname}-{year}-{month}".
      salt (bytes, optional):
                            The PBKDF2 salt. Defaults to the fixed 16-byte KEY_SALT.
      pbkdf2_count(Optional[int], optional):
                            Number of iterations of the hash function to apply to the seed. If None,
                            PBKDF2_COUNT (100,000) is used. Defaults to None.
      key_size_bytes(int, optional):
                            Size of the generated key in bytes.  Default is 32 (256-bits).
      hmac_hash_module(ModuleType, optional):
                            The crytographic hashing module to use.  Default is SHA256.

  Raises:
      KeyDerivationError: The seed is empty or cannot be encoded, or PBKDF2 failed

  Returns:
      An AES symmetric key of length key_size_bytes that is deterministically derived
      from the seed and salt.
  """
  if pbkdf2_count is None:
    pbkdf2_count = PBKDF2_COUNT
  if not isinstance(seed, str) or seed == '':
    raise KeyDerivationError("Key seed must be a non-empty string")
  if pbkdf2_count < 1:
    raise KeyDerivationError(f"PBKDF2 iteration count must be positive, got {pbkdf2_count}")
  try:
    bin_seed = seed.encode('utf-8')
    key = PBKDF2(bin_seed, salt, dkLen=key_size_bytes, count=pbkdf2_count, hmac_hash_module=hmac_hash_module)
  except Exception as e:
    raise KeyDerivationError("Failed to generate encryption key") from e
  return cast(bytes, key)

def is_tagged(value: Any) -> bool:
  """Returns True if value is a string in the current "ENC1:" envelope format"""
  return isinstance(value, str) and value.startswith(ENVELOPE_PREFIX)

def is_legacy_ciphertext(value: Any) -> bool:
  """Returns True if value looks like untagged legacy ciphertext.

  This is a heuristic: a string made only of base64 alphabet characters and longer than
  LEGACY_MIN_LENGTH characters. Plaintext that happens to look like base64 is misclassified.
  """
  return isinstance(value, str) and len(value) > LEGACY_MIN_LENGTH and _legacy_re.fullmatch(value) is not None

def is_encrypted(value: Any) -> bool:
  """Check whether a field value appears to be encrypted.

  Args:
      value (Any): A field value. Non-string and empty values are never encrypted.

  Returns:
      bool: True for "ENC1:"-tagged strings, and for untagged strings that pass the legacy heuristic.
  """
  if not isinstance(value, str) or value == '':
    return False
  return is_tagged(value) or is_legacy_ciphertext(value)

def encode_envelope(nonce: bytes, ciphertext_data_and_tag: bytes) -> str:
  """Build a current-format envelope: "ENC1:" + b64encode(nonce + ciphertext_data_and_tag)"""
  b64_payload = b64encode(nonce + ciphertext_data_and_tag).decode('utf-8')
  return f"{ENVELOPE_PREFIX}{b64_payload}"

def decode_envelope(ciphertext: str) -> bytes:
  """Decode a tagged or legacy envelope into its raw IV || ciphertext || tag payload.

  Raises:
      BadEnvelopeError: Not valid base64, or too short to hold an IV and a tag
  """
  if is_tagged(ciphertext):
    b64_payload = ciphertext[len(ENVELOPE_PREFIX):]
  else:
    b64_payload = ciphertext
  try:
    payload = b64decode(b64_payload, validate=True)
  except (binascii.Error, ValueError) as e:
    raise BadEnvelopeError(f"Badly formed ciphertext value: {ciphertext}") from e
  if len(payload) < NONCE_SIZE_BYTES + TAG_SIZE_BYTES:
    raise BadEnvelopeError(
        f"Ciphertext not long enough to include {NONCE_SIZE_BYTES}-byte IV and {TAG_SIZE_BYTES}-byte tag"
      )
  return payload

def _check_key(key: bytes) -> None:
  if not isinstance(key, bytes) or len(key) != KEY_SIZE_BYTES:
    size = len(key) if isinstance(key, bytes) else type(key).__name__
    raise KeyDerivationError(f"Wrong key size for AES-256, expected {KEY_SIZE_BYTES} bytes, got {size}")

def encrypt_string(plaintext: str, key: bytes, nonce: Optional[bytes]=None) -> str:
  """Encrypt a string using AES-256 GCM mode

  Encrypts the plaintext string, returning a ciphertext string of the form:

    "ENC1:" + b64encode(nonce + aes_encrypt(plaintext.encode('utf-8')) + tag)

  Args:
      plaintext (str): A non-empty plaintext string to be encrypted
      key (bytes): A 256-bit (32-byte) symmetric AES key
      nonce (Optional[bytes], optional): An optional 12-byte IV. If None, a random 12-byte
                                         IV will be generated. Defaults to None.

  Raises:
      KeyDerivationError: Wrong size key
      EncryptOperationError: Wrong size nonce, or AES-GCM failed

  Returns:
      str: An encrypted representation of plaintext, which may be decrypted with decrypt_string().
  """
  assert isinstance(plaintext, str)
  _check_key(key)
  if nonce is None:
    nonce = generate_nonce(NONCE_SIZE_BYTES)
  elif len(nonce) != NONCE_SIZE_BYTES:
    raise EncryptOperationError(f"IV must be {NONCE_SIZE_BYTES} bytes in length")
  try:
    cipher = cast(GcmMode, AES.new(key, AES.MODE_GCM, nonce=nonce, mac_len=TAG_SIZE_BYTES))
    ciphertext_data, tag = cipher.encrypt_and_digest(plaintext.encode('utf-8'))
  except Exception as e:
    raise EncryptOperationError("Field cannot be encrypted") from e
  return encode_envelope(nonce, ciphertext_data + tag)

def decrypt_payload(payload: bytes, key: bytes) -> str:
  """Decrypt a raw IV || ciphertext || tag payload into a string.

  Raises:
      KeyDerivationError: Wrong size key
      DecryptOperationError: Authentication failed or the plaintext is not UTF-8
  """
  _check_key(key)
  nonce = payload[:NONCE_SIZE_BYTES]
  ciphertext_data = payload[NONCE_SIZE_BYTES:-TAG_SIZE_BYTES]
  ciphertext_tag = payload[-TAG_SIZE_BYTES:]
  try:
    cipher = cast(GcmMode, AES.new(key, AES.MODE_GCM, nonce=nonce, mac_len=TAG_SIZE_BYTES))
    bin_plaintext = cipher.decrypt_and_verify(ciphertext_data, ciphertext_tag)
    plaintext = bin_plaintext.decode('utf-8')
  except Exception as e:
    raise DecryptOperationError("Ciphertext cannot be decrypted with the given key") from e
  return plaintext

def decrypt_string(ciphertext: str, key: bytes) -> str:
  """Decrypt a string previously encrypted with encrypt_string(), or a legacy untagged ciphertext

  Args:
      ciphertext (str): An encrypted string in the form:
                          "ENC1:" + b64encode(nonce + aes_encrypt(plaintext.encode('utf-8')) + tag)
                        or the legacy form without the "ENC1:" prefix.
      key (bytes): A 256-bit (32-byte) symmetric AES key

  Raises:
      KeyDerivationError: Wrong size key
      BadEnvelopeError: Badly formed ciphertext
      DecryptOperationError: Key is incorrect or ciphertext was tampered with

  Returns:
      str: The original plaintext, as passed to encrypt_string
  """
  assert isinstance(ciphertext, str)
  payload = decode_envelope(ciphertext)
  return decrypt_payload(payload, key)

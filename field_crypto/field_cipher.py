#!/usr/bin/env python3
#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Encryption/decryption of individual string fields and of named fields in records"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, TypeVar, Callable

import asyncio
import logging
import functools

from .exceptions import (
    FieldCryptoError,
    EncryptOperationError,
    DecryptOperationError,
    KeyDerivationError,
  )
from .constants import (
    KEY_SIZE_BYTES,
    NONCE_SIZE_BYTES,
    TAG_SIZE_BYTES,
    ENVELOPE_PREFIX,
  )
from .config import FieldCryptoConfig
from .key_provider import KeyProvider, SeededKeyProvider
from .result import CryptoResult
from .util import (
    encrypt_string,
    decode_envelope,
    decrypt_payload,
    is_tagged,
    is_legacy_ciphertext,
    is_encrypted,
  )

logger = logging.getLogger(__name__)

_T = TypeVar('_T')

class FieldCipher:
  """Encrypter/decrypter for PII fields in records written to and read from a storage backend.

  Symmetric 256-bit AES encryption in GCM mode is used, with a fresh random 12-byte IV for each value,
  resulting in ciphertext that has a 16-byte authentication tag attached. Encrypted fields are
  stored as strings of the form:

          "ENC1:" + b64encode(iv + encrypted_data + tag_16_bytes)

  Values written before the "ENC1:" tag was introduced are untagged:

          b64encode(iv + encrypted_data + tag_16_bytes)

  and are recognized only heuristically (base64 alphabet, longer than 16 characters).

  The key comes from a KeyProvider. By default that is a SeededKeyProvider, which derives the key from
  the application name, the host name and the current month, so the key rotates monthly.

  encrypt() and decrypt() never raise: any failure is logged and the original value is returned, so that
  a crypto failure never blocks writing or displaying a record. Callers that need to know about failures
  use try_encrypt() and try_decrypt(), which return a CryptoResult.

  For example, encrypting a shipping address before it is written, and decrypting it after it is read:

      cipher = FieldCipher()
      stored = cipher.encrypt_fields(shipping_address, ['name', 'address', 'phone'])
      ...
      shown = cipher.decrypt_fields(stored, ['name', 'address', 'phone', 'email'])

  Every operation also has an async counterpart that runs the crypto in the event loop's default executor.
  """

  KEY_SIZE_BYTES = KEY_SIZE_BYTES
  """Number of bytes in the AES key"""

  NONCE_SIZE_BYTES = NONCE_SIZE_BYTES
  """Number of random bytes used for the IV on each encrypted value"""

  TAG_SIZE_BYTES = TAG_SIZE_BYTES
  """Size of the GCM authentication tag appended to each encrypted value"""

  ENVELOPE_PREFIX = ENVELOPE_PREFIX
  """Prefix identifying current-format ciphertext"""

  _key_provider: KeyProvider
  _log_legacy_decrypt: bool

  def __init__(self, key_provider: Optional[KeyProvider]=None, log_legacy_decrypt: bool=True):
    """Create a field encrypter/decrypter.

    Args:
        key_provider (Optional[KeyProvider], optional):
                              The source of the AES key. If None, a SeededKeyProvider with default
                              settings is used. Defaults to None.
        log_legacy_decrypt (bool, optional):
                              If True, a warning is logged every time an untagged legacy ciphertext is
                              decrypted. Defaults to True.
    """
    self._key_provider = SeededKeyProvider() if key_provider is None else key_provider
    self._log_legacy_decrypt = log_legacy_decrypt

  @classmethod
  def from_config(cls, config: Optional[FieldCryptoConfig]=None) -> 'FieldCipher':
    """Create a FieldCipher with a SeededKeyProvider built from configuration.

    Args:
        config (Optional[FieldCryptoConfig], optional):
                              The configuration. If None, FieldCryptoConfig.load() is used. Defaults to None.
    """
    if config is None:
      config = FieldCryptoConfig.load()
    key_provider = SeededKeyProvider(
        app_name=config.app_name,
        hostname=config.hostname,
        pbkdf2_count=config.pbkdf2_count,
        history_months=config.history_months,
      )
    return cls(key_provider, log_legacy_decrypt=config.log_legacy_decrypt)

  @property
  def key_provider(self) -> KeyProvider:
    return self._key_provider

  def get_key(self) -> bytes:
    """Return the AES key used for new encryptions, deriving it if necessary.

    Raises:
        KeyDerivationError: The key could not be derived
    """
    try:
      return self._key_provider.get_or_derive_key()
    except KeyDerivationError:
      raise
    except Exception as e:
      raise KeyDerivationError("Failed to generate encryption key") from e

  def _candidate_keys(self) -> List[bytes]:
    try:
      return self._key_provider.candidate_keys()
    except KeyDerivationError:
      raise
    except Exception as e:
      raise KeyDerivationError("Failed to generate encryption key") from e

  @staticmethod
  def is_encrypted(value: Any) -> bool:
    """Returns True if value is "ENC1:"-tagged, or is an untagged string that looks like legacy ciphertext"""
    return is_encrypted(value)

  def try_encrypt(self, plaintext: str, nonce: Optional[bytes]=None) -> CryptoResult:
    """Encrypt a plaintext field, reporting failure instead of hiding it.

    Args:
        plaintext (str):   The field value. An empty string is returned unchanged.
        nonce (Optional[bytes], optional):
                           An optional 12-byte IV, to force the use of a specific IV.
                           If None, a random IV will be generated. Defaults to None.

    Returns:
        CryptoResult: On success, the "ENC1:" ciphertext. On failure, a KeyDerivationError or
                      EncryptOperationError.
    """
    if not isinstance(plaintext, str):
      return CryptoResult.failure(EncryptOperationError(f"Only strings can be encrypted, got {type(plaintext).__name__}"))
    if plaintext == '':
      return CryptoResult.success(plaintext)
    try:
      key = self.get_key()
      ciphertext = encrypt_string(plaintext, key, nonce=nonce)
    except FieldCryptoError as e:
      return CryptoResult.failure(e)
    return CryptoResult.success(ciphertext)

  def encrypt(self, plaintext: str, nonce: Optional[bytes]=None) -> str:
    """Encrypt a plaintext field into an "ENC1:" ciphertext string.

    If encryption fails for any reason, the failure is logged and the plaintext is returned unchanged;
    this never raises.

    Args:
        plaintext (str):   The field value. An empty string is returned unchanged.
        nonce (Optional[bytes], optional):
                           An optional 12-byte IV. If None, a random IV will be generated. Defaults to None.

    Returns:
        str: The ciphertext, of the form "ENC1:" + b64encode(iv + encrypted_data + tag_16_bytes),
             or plaintext if encryption failed.
    """
    result = self.try_encrypt(plaintext, nonce=nonce)
    if not result.ok:
      logger.error("Encryption error: %s", result.error, exc_info=result.error)
    return result.value_or(plaintext)

  def _decrypt_with_candidates(self, value: str) -> str:
    payload = decode_envelope(value)
    last_error: Optional[DecryptOperationError] = None
    for key in self._candidate_keys():
      try:
        return decrypt_payload(payload, key)
      except DecryptOperationError as e:
        last_error = e
    assert last_error is not None
    raise last_error

  def try_decrypt(self, value: str) -> CryptoResult:
    """Decrypt a field value, reporting failure instead of hiding it.

    Args:
        value (str):   A field value. Empty strings and values that do not look encrypted
                       are returned unchanged as a success.

    Returns:
        CryptoResult: On success, the plaintext. On failure, a KeyDerivationError, BadEnvelopeError
                      or DecryptOperationError.
    """
    if not isinstance(value, str):
      return CryptoResult.failure(DecryptOperationError(f"Only strings can be decrypted, got {type(value).__name__}"))
    if value == '':
      return CryptoResult.success(value)
    if not is_tagged(value):
      if not is_legacy_ciphertext(value):
        return CryptoResult.success(value)
      if self._log_legacy_decrypt:
        logger.warning("Decrypting legacy encrypted data. Consider re-encrypting with the new method.")
    try:
      plaintext = self._decrypt_with_candidates(value)
    except FieldCryptoError as e:
      return CryptoResult.failure(e)
    return CryptoResult.success(plaintext)

  def decrypt(self, value: str) -> str:
    """Decrypt an "ENC1:" or legacy ciphertext field back into plaintext.

    If decryption fails for any reason (wrong key, a rotated key bucket, tampering, malformed
    ciphertext), the failure is logged and the value is returned unchanged; this never raises.

    Args:
        value (str):   A field value. Empty strings and values that do not look encrypted
                       are returned unchanged.

    Returns:
        str: The plaintext, or value itself if it is not encrypted or cannot be decrypted.
    """
    result = self.try_decrypt(value)
    if not result.ok:
      if is_tagged(value):
        logger.error("Decryption error: %s", result.error, exc_info=result.error)
      else:
        logger.error("Failed to decrypt legacy data: %s", result.error, exc_info=result.error)
    return result.value_or(value)

  def encrypt_fields(self, record: Mapping[str, Any], field_names: Iterable[str]) -> Dict[str, Any]:
    """Return a shallow copy of record with the named string fields encrypted.

    Fields that are not named, that are absent, empty or not strings, or that already look encrypted
    are copied unchanged, so encrypting a record twice never double-wraps a field.

    Args:
        record (Mapping[str, Any]):  The record to encrypt.
        field_names (Iterable[str]): Names of the fields to encrypt.

    Returns:
        Dict[str, Any]: A new dict with the same keys as record.
    """
    result = dict(record)
    for name in field_names:
      value = result.get(name)
      if isinstance(value, str) and value != '' and not is_encrypted(value):
        result[name] = self.encrypt(value)
    return result

  def decrypt_fields(self, record: Mapping[str, Any], field_names: Iterable[str]) -> Dict[str, Any]:
    """Return a shallow copy of record with the named encrypted fields decrypted.

    Only named fields that look encrypted are decrypted; all other fields are copied unchanged.
    A field that cannot be decrypted keeps its ciphertext.

    Args:
        record (Mapping[str, Any]):  The record to decrypt.
        field_names (Iterable[str]): Names of the fields to decrypt.

    Returns:
        Dict[str, Any]: A new dict with the same keys as record.
    """
    result = dict(record)
    for name in field_names:
      value = result.get(name)
      if isinstance(value, str) and is_encrypted(value):
        result[name] = self.decrypt(value)
    return result

  # =========== async counterparts

  async def _in_executor(self, func: Callable[..., _T], *args: Any, **kwargs: Any) -> _T:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

  async def get_key_async(self) -> bytes:
    return await self._in_executor(self.get_key)

  async def try_encrypt_async(self, plaintext: str, nonce: Optional[bytes]=None) -> CryptoResult:
    return await self._in_executor(self.try_encrypt, plaintext, nonce=nonce)

  async def encrypt_async(self, plaintext: str, nonce: Optional[bytes]=None) -> str:
    return await self._in_executor(self.encrypt, plaintext, nonce=nonce)

  async def try_decrypt_async(self, value: str) -> CryptoResult:
    return await self._in_executor(self.try_decrypt, value)

  async def decrypt_async(self, value: str) -> str:
    return await self._in_executor(self.decrypt, value)

  async def encrypt_fields_async(self, record: Mapping[str, Any], field_names: Iterable[str]) -> Dict[str, Any]:
    return await self._in_executor(self.encrypt_fields, record, list(field_names))

  async def decrypt_fields_async(self, record: Mapping[str, Any], field_names: Iterable[str]) -> Dict[str, Any]:
    return await self._in_executor(self.decrypt_fields, record, list(field_names))

#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Process-wide default FieldCipher and module-level shortcuts to it.

The default cipher is created lazily from FieldCryptoConfig.load() on first use. Applications that
need a different key source install their own with set_default_cipher().
"""

from typing import Any, Dict, Iterable, Mapping, Optional

import threading

from .field_cipher import FieldCipher

_default_cipher: Optional[FieldCipher] = None
_default_lock = threading.Lock()

def get_default_cipher() -> FieldCipher:
  global _default_cipher
  with _default_lock:
    if _default_cipher is None:
      _default_cipher = FieldCipher.from_config()
    return _default_cipher

def set_default_cipher(cipher: Optional[FieldCipher]) -> None:
  """Replace the default cipher. None discards it, so the next use recreates it from configuration."""
  global _default_cipher
  with _default_lock:
    _default_cipher = cipher

def get_key() -> bytes:
  return get_default_cipher().get_key()

def encrypt(plaintext: str) -> str:
  return get_default_cipher().encrypt(plaintext)

def decrypt(value: str) -> str:
  return get_default_cipher().decrypt(value)

def is_encrypted(value: Any) -> bool:
  return FieldCipher.is_encrypted(value)

def encrypt_fields(record: Mapping[str, Any], field_names: Iterable[str]) -> Dict[str, Any]:
  return get_default_cipher().encrypt_fields(record, field_names)

def decrypt_fields(record: Mapping[str, Any], field_names: Iterable[str]) -> Dict[str, Any]:
  return get_default_cipher().decrypt_fields(record, field_names)

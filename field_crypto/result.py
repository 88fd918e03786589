#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Typed outcome of a field encryption or decryption"""

from typing import Optional

from .exceptions import FieldCryptoError

class CryptoResult:
  """Either a successfully transformed field value, or the error that prevented it.

  Returned by FieldCipher.try_encrypt() and FieldCipher.try_decrypt(), so that the caller decides
  whether to block a write, retry, or accept an unencrypted value.
  """

  _value: Optional[str]
  _error: Optional[FieldCryptoError]

  def __init__(self, value: Optional[str]=None, error: Optional[FieldCryptoError]=None):
    if (value is None) == (error is None):
      raise ValueError("Exactly one of value and error must be provided to CryptoResult")
    self._value = value
    self._error = error

  @classmethod
  def success(cls, value: str) -> 'CryptoResult':
    return cls(value=value)

  @classmethod
  def failure(cls, error: FieldCryptoError) -> 'CryptoResult':
    return cls(error=error)

  @property
  def ok(self) -> bool:
    return self._error is None

  @property
  def error(self) -> Optional[FieldCryptoError]:
    return self._error

  @property
  def value(self) -> str:
    """The transformed value. Raises the stored error if the operation failed."""
    if self._error is not None:
      raise self._error
    assert self._value is not None
    return self._value

  def value_or(self, default: str) -> str:
    return default if self._error is not None else self.value

  def __repr__(self) -> str:
    if self.ok:
      return f"CryptoResult.success({self._value!r})"
    return f"CryptoResult.failure({self._error!r})"

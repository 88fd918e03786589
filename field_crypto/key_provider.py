#!/usr/bin/env python3
#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Providers of the AES key used for field encryption"""

from typing import Callable, Dict, List, Optional, Sequence, Tuple

import socket
import logging
import threading
from datetime import datetime

from .exceptions import KeyDerivationError
from .constants import (
    APP_NAME,
    KEY_SALT,
    KEY_SIZE_BYTES,
    PBKDF2_COUNT,
    HISTORY_MONTHS,
  )
from .util import generate_key, generate_key_from_seed

logger = logging.getLogger(__name__)

TimeBucket = Tuple[int, int]
"""A (year, month) pair; month is 1..12"""

class KeySeed:
  """The inputs from which a field encryption key is derived.

  The seed string is "{app_name}-{hostname}-{year}-{month}", which makes the derived key both
  deployment-specific and month-rotating.
  """

  app_name: str
  hostname: str
  year: int
  month: int

  def __init__(self, app_name: str, hostname: str, year: int, month: int):
    if not 1 <= month <= 12:
      raise KeyDerivationError(f"Key seed month must be in 1..12, got {month}")
    self.app_name = app_name
    self.hostname = hostname
    self.year = year
    self.month = month

  @classmethod
  def for_time(cls, app_name: str, hostname: str, when: datetime) -> 'KeySeed':
    return cls(app_name, hostname, when.year, when.month)

  @property
  def bucket(self) -> TimeBucket:
    return (self.year, self.month)

  def previous(self) -> 'KeySeed':
    """The seed for the preceding calendar month"""
    if self.month == 1:
      return KeySeed(self.app_name, self.hostname, self.year - 1, 12)
    return KeySeed(self.app_name, self.hostname, self.year, self.month - 1)

  def __str__(self) -> str:
    return f"{self.app_name}-{self.hostname}-{self.year}-{self.month}"

  def __repr__(self) -> str:
    return f"KeySeed(app_name={self.app_name!r}, hostname={self.hostname!r}, year={self.year}, month={self.month})"

  def __eq__(self, other: object) -> bool:
    if not isinstance(other, KeySeed):
      return NotImplemented
    return str(self) == str(other)

  def __hash__(self) -> int:
    return hash(str(self))

class KeyProvider:
  """Abstract source of the field encryption key.

  Subclasses memoize whatever they derive; invalidate() drops the memo so the next
  call derives again.
  """

  def get_or_derive_key(self) -> bytes:
    """Return the key used for new encryptions.

    Raises:
        KeyDerivationError: The key could not be derived
    """
    raise NotImplementedError()

  def candidate_keys(self) -> List[bytes]:
    """Return the keys to try, in order, when decrypting. The first is always get_or_derive_key()."""
    return [ self.get_or_derive_key() ]

  def invalidate(self) -> None:
    """Discard any memoized key material"""
    pass

class StaticKeyProvider(KeyProvider):
  """A KeyProvider that always returns a fixed key. Useful for tests and for keys managed elsewhere."""

  _key: bytes
  _old_keys: List[bytes]

  def __init__(self, key: Optional[bytes]=None, old_keys: Optional[Sequence[bytes]]=None):
    """Create a provider for a fixed key.

    Args:
        key (Optional[bytes], optional): A 32-byte AES key. If None, a random key is generated.
        old_keys (Optional[Sequence[bytes]], optional): Additional keys tried, in order, after
                  key when decrypting. Defaults to None.
    """
    if key is None:
      key = generate_key()
    for k in [ key ] + list(old_keys or []):
      if len(k) != KEY_SIZE_BYTES:
        raise KeyDerivationError(f"Wrong key size for AES-256, expected {KEY_SIZE_BYTES} bytes, got {len(k)}")
    self._key = key
    self._old_keys = list(old_keys or [])

  def get_or_derive_key(self) -> bytes:
    return self._key

  def candidate_keys(self) -> List[bytes]:
    return [ self._key ] + self._old_keys

class SeededKeyProvider(KeyProvider):
  """Derives the field encryption key from an app name, a host name and the current month.

  The key is derived with PBKDF2-HMAC-SHA256 over the seed string and the fixed KEY_SALT, and is memoized
  per (year, month) bucket. When the clock moves into a new month, the next call derives a fresh key.
  Ciphertext written under an earlier bucket can only be decrypted if history_months covers it.
  """

  _app_name: str
  _hostname: str
  _salt: bytes
  _pbkdf2_count: int
  _history_months: int
  _clock: Callable[[], datetime]
  _keys: Dict[KeySeed, bytes]
  _lock: threading.Lock

  def __init__(
        self,
        app_name: Optional[str]=None,
        hostname: Optional[str]=None,
        pbkdf2_count: Optional[int]=None,
        history_months: Optional[int]=None,
        clock: Optional[Callable[[], datetime]]=None,
        salt: bytes=KEY_SALT,
      ):
    """Create a key provider for a deployment.

    Args:
        app_name (Optional[str], optional):
                              The application identifier. If None, APP_NAME is used. Defaults to None.
        hostname (Optional[str], optional):
                              The deployment's host name. If None, socket.gethostname() is used. Defaults to None.
        pbkdf2_count (Optional[int], optional):
                              PBKDF2 iteration count. If None, PBKDF2_COUNT (100,000) is used. Defaults to None.
        history_months (Optional[int], optional):
                              Number of preceding monthly buckets whose keys are also tried when
                              decrypting. If None, HISTORY_MONTHS (0) is used. Defaults to None.
        clock (Optional[Callable[[], datetime]], optional):
                              Returns the current local time. If None, datetime.now is used. Defaults to None.
        salt (bytes, optional):
                              The PBKDF2 salt. Defaults to KEY_SALT.
    """
    self._app_name = APP_NAME if app_name is None else app_name
    self._hostname = socket.gethostname() if hostname is None else hostname
    self._pbkdf2_count = PBKDF2_COUNT if pbkdf2_count is None else pbkdf2_count
    self._history_months = HISTORY_MONTHS if history_months is None else history_months
    if self._history_months < 0:
      raise KeyDerivationError(f"history_months must not be negative, got {self._history_months}")
    self._clock = datetime.now if clock is None else clock
    self._salt = salt
    self._keys = {}
    self._lock = threading.Lock()

  @property
  def app_name(self) -> str:
    return self._app_name

  @property
  def hostname(self) -> str:
    return self._hostname

  @property
  def pbkdf2_count(self) -> int:
    return self._pbkdf2_count

  @property
  def history_months(self) -> int:
    return self._history_months

  def current_seed(self) -> KeySeed:
    """The key seed for the clock's current month"""
    try:
      now = self._clock()
    except Exception as e:
      raise KeyDerivationError("Unable to read the current time for the key seed") from e
    return KeySeed.for_time(self._app_name, self._hostname, now)

  def seeds(self) -> List[KeySeed]:
    """The current seed followed by history_months preceding seeds"""
    seed = self.current_seed()
    result = [ seed ]
    for _ in range(self._history_months):
      seed = seed.previous()
      result.append(seed)
    return result

  def key_for_seed(self, seed: KeySeed) -> bytes:
    """Return the memoized key for seed, deriving it if necessary.

    Raises:
        KeyDerivationError: PBKDF2 failed
    """
    with self._lock:
      key = self._keys.get(seed)
      if key is None:
        logger.debug("Deriving field encryption key for bucket %04d-%02d", seed.year, seed.month)
        key = generate_key_from_seed(str(seed), salt=self._salt, pbkdf2_count=self._pbkdf2_count)
        self._keys[seed] = key
      return key

  def get_or_derive_key(self) -> bytes:
    seeds = self.seeds()
    self._forget_except(seeds)
    return self.key_for_seed(seeds[0])

  def candidate_keys(self) -> List[bytes]:
    seeds = self.seeds()
    self._forget_except(seeds)
    return [ self.key_for_seed(seed) for seed in seeds ]

  def invalidate(self) -> None:
    with self._lock:
      self._keys.clear()

  def _forget_except(self, seeds: List[KeySeed]) -> None:
    with self._lock:
      for seed in [ s for s in self._keys if s not in seeds ]:
        del self._keys[seed]

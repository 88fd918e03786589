#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from datetime import datetime

import pytest

from field_crypto import FieldCipher, SeededKeyProvider, set_default_cipher

TEST_PBKDF2_COUNT = 1000
TEST_HOSTNAME = 'shop.example.si'

class MutableClock:
  """A clock whose time tests can move"""

  now: datetime

  def __init__(self, now: datetime):
    self.now = now

  def __call__(self) -> datetime:
    return self.now

@pytest.fixture
def clock() -> MutableClock:
  return MutableClock(datetime(2024, 5, 10, 12, 0, 0))

@pytest.fixture
def key_provider(clock: MutableClock) -> SeededKeyProvider:
  return SeededKeyProvider(hostname=TEST_HOSTNAME, pbkdf2_count=TEST_PBKDF2_COUNT, clock=clock)

@pytest.fixture
def cipher(key_provider: SeededKeyProvider) -> FieldCipher:
  return FieldCipher(key_provider)

@pytest.fixture(autouse=True)
def reset_default_cipher():
  yield
  set_default_cipher(None)

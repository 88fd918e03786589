#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

import asyncio
import logging
from base64 import b64decode, b64encode
from datetime import datetime

import pytest

from field_crypto import (
    CryptoResult,
    DecryptOperationError,
    EncryptOperationError,
    FieldCipher,
    FieldCryptoConfig,
    KeyDerivationError,
    KeyProvider,
    KeySeed,
    SeededKeyProvider,
    StaticKeyProvider,
    generate_key,
  )
import field_crypto.key_provider as key_provider_module


class FailingKeyProvider(KeyProvider):
  def get_or_derive_key(self) -> bytes:
    raise RuntimeError("no crypto provider")


def corrupt(ciphertext: str) -> str:
  payload = bytearray(b64decode(ciphertext[len('ENC1:'):]))
  payload[14] ^= 0x01
  return 'ENC1:' + b64encode(bytes(payload)).decode('utf-8')


@pytest.mark.parametrize('plaintext', [
    'Jane Doe',
    'Prešernova cesta 12, 2000 Maribor',
    '+386 40 123 456',
    'x',
    'QUJDREVGR0hJSktMTU5PUA==',
    '🍯 med in 🧀 sir',
    'a' * 1000,
  ])
def test_round_trip(cipher, plaintext):
  ciphertext = cipher.encrypt(plaintext)
  assert ciphertext != plaintext
  assert ciphertext.startswith('ENC1:')
  assert cipher.is_encrypted(ciphertext)
  assert cipher.decrypt(ciphertext) == plaintext

def test_empty_string_identity(cipher):
  assert cipher.encrypt('') == ''
  assert cipher.decrypt('') == ''
  assert cipher.try_encrypt('').value == ''
  assert cipher.try_decrypt('').value == ''

def test_plaintext_passes_through_decrypt(cipher):
  assert cipher.decrypt('Jane Doe') == 'Jane Doe'
  assert cipher.try_decrypt('Jane Doe').ok

def test_encrypt_with_fixed_iv_is_deterministic(cipher):
  nonce = bytes(12)
  assert cipher.encrypt('Jane Doe', nonce=nonce) == cipher.encrypt('Jane Doe', nonce=nonce)

def test_legacy_ciphertext_is_detected_and_decrypted(cipher, caplog):
  legacy = cipher.encrypt('Jane Doe')[len('ENC1:'):]
  assert len(legacy) > 16
  assert cipher.is_encrypted(legacy)
  with caplog.at_level(logging.WARNING, logger='field_crypto.field_cipher'):
    assert cipher.decrypt(legacy) == 'Jane Doe'
  assert 'legacy' in caplog.text

def test_legacy_warning_can_be_disabled(key_provider, caplog):
  cipher = FieldCipher(key_provider, log_legacy_decrypt=False)
  legacy = cipher.encrypt('Jane Doe')[len('ENC1:'):]
  with caplog.at_level(logging.WARNING, logger='field_crypto.field_cipher'):
    assert cipher.decrypt(legacy) == 'Jane Doe'
  assert caplog.records == []

def test_base64_looking_plaintext_is_returned_unchanged(cipher, caplog):
  value = 'MarijaNovakMaribor'
  assert cipher.is_encrypted(value)
  with caplog.at_level(logging.ERROR, logger='field_crypto.field_cipher'):
    assert cipher.decrypt(value) == value
  result = cipher.try_decrypt(value)
  assert not result.ok
  assert isinstance(result.error, DecryptOperationError)

def test_corrupted_ciphertext_is_returned_unchanged(cipher, caplog):
  bad = corrupt(cipher.encrypt('Jane Doe'))
  with caplog.at_level(logging.ERROR, logger='field_crypto.field_cipher'):
    assert cipher.decrypt(bad) == bad
  assert 'Decryption error' in caplog.text
  assert 'Jane Doe' not in caplog.text

def test_try_decrypt_reports_corruption(cipher):
  result = cipher.try_decrypt(corrupt(cipher.encrypt('Jane Doe')))
  assert not result.ok
  assert isinstance(result.error, DecryptOperationError)
  with pytest.raises(DecryptOperationError):
    result.value

def test_malformed_envelope_is_returned_unchanged(cipher):
  assert cipher.decrypt('ENC1:%%%') == 'ENC1:%%%'

def test_key_failure_falls_back_to_plaintext(caplog):
  cipher = FieldCipher(FailingKeyProvider())
  with caplog.at_level(logging.ERROR, logger='field_crypto.field_cipher'):
    assert cipher.encrypt('Jane Doe') == 'Jane Doe'
  assert 'Encryption error' in caplog.text
  result = cipher.try_encrypt('Jane Doe')
  assert not result.ok
  assert isinstance(result.error, KeyDerivationError)
  with pytest.raises(KeyDerivationError):
    cipher.get_key()

def test_key_failure_on_decrypt_returns_input():
  good = FieldCipher(StaticKeyProvider()).encrypt('Jane Doe')
  cipher = FieldCipher(FailingKeyProvider())
  assert cipher.decrypt(good) == good
  assert isinstance(cipher.try_decrypt(good).error, KeyDerivationError)

def test_non_string_values_are_failures(cipher):
  assert isinstance(cipher.try_encrypt(30).error, EncryptOperationError)
  assert cipher.encrypt(30) == 30
  assert isinstance(cipher.try_decrypt(30).error, DecryptOperationError)

def test_wrong_key_fails_gracefully():
  ciphertext = FieldCipher(StaticKeyProvider()).encrypt('Jane Doe')
  assert FieldCipher(StaticKeyProvider()).decrypt(ciphertext) == ciphertext

def test_static_provider_old_keys_are_tried():
  old_key = generate_key()
  old = FieldCipher(StaticKeyProvider(old_key)).encrypt('Jane Doe')
  cipher = FieldCipher(StaticKeyProvider(generate_key(), old_keys=[ old_key ]))
  assert cipher.decrypt(old) == 'Jane Doe'

def test_static_provider_rejects_bad_key():
  with pytest.raises(KeyDerivationError):
    StaticKeyProvider(b'short')

def test_key_is_stable_within_a_month(cipher, key_provider, clock, monkeypatch):
  calls = []
  real_generate = key_provider_module.generate_key_from_seed
  def counting_generate(seed, **kwargs):
    calls.append(seed)
    return real_generate(seed, **kwargs)
  monkeypatch.setattr(key_provider_module, 'generate_key_from_seed', counting_generate)

  first = cipher.encrypt('Jane Doe')
  clock.now = datetime(2024, 5, 31, 23, 59, 59)
  second = cipher.encrypt('John Doe')
  assert calls == [ 'kmetija-marosa-app-shop.example.si-2024-5' ]

  fresh = FieldCipher(SeededKeyProvider(hostname='shop.example.si', pbkdf2_count=1000,
                                        clock=lambda: datetime(2024, 5, 1)))
  assert fresh.decrypt(first) == 'Jane Doe'
  assert fresh.decrypt(second) == 'John Doe'

def test_key_rotates_with_the_month(cipher, clock):
  may_key = cipher.get_key()
  may = cipher.encrypt('Jane Doe')
  clock.now = datetime(2024, 6, 1)
  assert cipher.get_key() != may_key
  assert cipher.decrypt(may) == may

def test_history_months_keeps_previous_bucket_decryptable(clock):
  provider = SeededKeyProvider(hostname='shop.example.si', pbkdf2_count=1000, history_months=1, clock=clock)
  cipher = FieldCipher(provider)
  may = cipher.encrypt('Jane Doe')
  clock.now = datetime(2024, 6, 3)
  assert cipher.decrypt(may) == 'Jane Doe'
  june = cipher.encrypt('Jane Doe')
  assert cipher.decrypt(june) == 'Jane Doe'
  clock.now = datetime(2024, 8, 1)
  assert cipher.decrypt(may) == may

def test_key_depends_on_hostname(clock):
  a = FieldCipher(SeededKeyProvider(hostname='a.example', pbkdf2_count=1000, clock=clock))
  b = FieldCipher(SeededKeyProvider(hostname='b.example', pbkdf2_count=1000, clock=clock))
  assert a.get_key() != b.get_key()
  assert b.decrypt(a.encrypt('Jane Doe')) != 'Jane Doe'

def test_invalidate_forces_rederivation(cipher, key_provider, monkeypatch):
  cipher.get_key()
  calls = []
  real_generate = key_provider_module.generate_key_from_seed
  def counting_generate(seed, **kwargs):
    calls.append(seed)
    return real_generate(seed, **kwargs)
  monkeypatch.setattr(key_provider_module, 'generate_key_from_seed', counting_generate)
  cipher.get_key()
  assert calls == []
  key_provider.invalidate()
  cipher.get_key()
  assert len(calls) == 1

def test_from_config():
  config = FieldCryptoConfig(hostname='shop.example.si', pbkdf2_count=1000, history_months=2)
  cipher = FieldCipher.from_config(config)
  provider = cipher.key_provider
  assert isinstance(provider, SeededKeyProvider)
  assert provider.hostname == 'shop.example.si'
  assert provider.pbkdf2_count == 1000
  assert provider.history_months == 2
  assert cipher.decrypt(cipher.encrypt('Jane Doe')) == 'Jane Doe'

def test_encrypt_fields_is_selective(cipher):
  result = cipher.encrypt_fields({ 'name': 'Ann', 'age': 30 }, [ 'name' ])
  assert result['name'].startswith('ENC1:')
  assert result['age'] == 30
  assert set(result) == { 'name', 'age' }

def test_encrypt_fields_skips_absent_empty_and_non_string(cipher):
  record = { 'name': '', 'phone': None, 'zip': 2000, 'city': 'Maribor' }
  result = cipher.encrypt_fields(record, [ 'name', 'phone', 'zip', 'address' ])
  assert result == record
  assert 'address' not in result

def test_encrypt_fields_returns_a_copy(cipher):
  record = { 'name': 'Ann' }
  result = cipher.encrypt_fields(record, [ 'name' ])
  assert record == { 'name': 'Ann' }
  assert result is not record

def test_encrypt_fields_encrypts_base64_like_text_with_trailing_newline(cipher):
  note = 'A' * 20 + '\n'
  result = cipher.encrypt_fields({ 'note': note }, [ 'note' ])
  assert result['note'].startswith('ENC1:')
  assert cipher.decrypt_fields(result, [ 'note' ]) == { 'note': note }

def test_encrypt_fields_is_idempotent(cipher):
  record = { 'name': 'Jane Doe', 'address': 'Main Street 1', 'city': 'Maribor' }
  once = cipher.encrypt_fields(record, [ 'name', 'address' ])
  twice = cipher.encrypt_fields(once, [ 'name', 'address' ])
  assert twice == once
  assert cipher.decrypt_fields(twice, [ 'name', 'address' ]) == record

def test_decrypt_fields_only_touches_encrypted_named_fields(cipher):
  stored = cipher.encrypt_fields({ 'name': 'Jane Doe', 'address': 'Main Street 1' }, [ 'name', 'address' ])
  stored['email'] = 'jane@example.com'
  stored['note'] = cipher.encrypt('not named')
  result = cipher.decrypt_fields(stored, [ 'name', 'address', 'phone', 'email' ])
  assert result['name'] == 'Jane Doe'
  assert result['address'] == 'Main Street 1'
  assert result['email'] == 'jane@example.com'
  assert result['note'] == stored['note']
  assert set(result) == set(stored)

def test_crypto_result():
  ok = CryptoResult.success('x')
  assert ok.ok and ok.value == 'x' and ok.error is None
  err = DecryptOperationError('bad')
  failed = CryptoResult.failure(err)
  assert not failed.ok
  assert failed.error is err
  assert failed.value_or('fallback') == 'fallback'
  with pytest.raises(ValueError):
    CryptoResult()

def test_async_operations(cipher):
  async def scenario():
    ciphertext = await cipher.encrypt_async('Jane Doe')
    plaintext = await cipher.decrypt_async(ciphertext)
    result = await cipher.try_encrypt_async('John')
    decrypted = await cipher.try_decrypt_async(result.value)
    stored = await cipher.encrypt_fields_async({ 'name': 'Ann', 'age': 30 }, [ 'name' ])
    restored = await cipher.decrypt_fields_async(stored, [ 'name' ])
    key = await cipher.get_key_async()
    return ciphertext, plaintext, decrypted.value, stored, restored, key

  ciphertext, plaintext, decrypted, stored, restored, key = asyncio.run(scenario())
  assert ciphertext.startswith('ENC1:')
  assert plaintext == 'Jane Doe'
  assert decrypted == 'John'
  assert stored['age'] == 30 and stored['name'].startswith('ENC1:')
  assert restored == { 'name': 'Ann', 'age': 30 }
  assert key == cipher.get_key()

def test_concurrent_async_calls_share_one_key(cipher, monkeypatch):
  calls = []
  real_generate = key_provider_module.generate_key_from_seed
  def counting_generate(seed, **kwargs):
    calls.append(seed)
    return real_generate(seed, **kwargs)
  monkeypatch.setattr(key_provider_module, 'generate_key_from_seed', counting_generate)

  async def scenario():
    return await asyncio.gather(*[ cipher.encrypt_async(f"name {i}") for i in range(20) ])

  ciphertexts = asyncio.run(scenario())
  assert len(calls) == 1
  assert [ cipher.decrypt(c) for c in ciphertexts ] == [ f"name {i}" for i in range(20) ]

def test_key_seed():
  seed = KeySeed.for_time('kmetija-marosa-app', 'shop.example.si', datetime(2024, 1, 15))
  assert str(seed) == 'kmetija-marosa-app-shop.example.si-2024-1'
  assert seed.bucket == (2024, 1)
  assert seed.previous().bucket == (2023, 12)
  assert seed.previous() == KeySeed('kmetija-marosa-app', 'shop.example.si', 2023, 12)
  with pytest.raises(KeyDerivationError):
    KeySeed('app', 'host', 2024, 13)

#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

import field_crypto
from field_crypto import FieldCipher, SeededKeyProvider, StaticKeyProvider


def test_module_functions_use_installed_cipher():
  cipher = FieldCipher(StaticKeyProvider())
  field_crypto.set_default_cipher(cipher)
  assert field_crypto.get_default_cipher() is cipher
  assert field_crypto.get_key() == cipher.get_key()

  ciphertext = field_crypto.encrypt('Jane Doe')
  assert ciphertext.startswith('ENC1:')
  assert field_crypto.is_encrypted(ciphertext)
  assert field_crypto.decrypt(ciphertext) == 'Jane Doe'
  assert cipher.decrypt(ciphertext) == 'Jane Doe'

  stored = field_crypto.encrypt_fields({ 'name': 'Ann', 'age': 30 }, [ 'name' ])
  assert stored['age'] == 30
  assert field_crypto.decrypt_fields(stored, [ 'name' ]) == { 'name': 'Ann', 'age': 30 }

def test_default_cipher_is_built_from_environment(monkeypatch):
  monkeypatch.setenv('FIELD_CRYPTO_HOSTNAME', 'shop.example.si')
  monkeypatch.setenv('FIELD_CRYPTO_PBKDF2_COUNT', '1000')
  field_crypto.set_default_cipher(None)
  cipher = field_crypto.get_default_cipher()
  provider = cipher.key_provider
  assert isinstance(provider, SeededKeyProvider)
  assert provider.hostname == 'shop.example.si'
  assert provider.pbkdf2_count == 1000
  assert field_crypto.get_default_cipher() is cipher
  assert field_crypto.decrypt(field_crypto.encrypt('Jane Doe')) == 'Jane Doe'

def test_empty_values_through_module_functions():
  field_crypto.set_default_cipher(FieldCipher(StaticKeyProvider()))
  assert field_crypto.encrypt('') == ''
  assert field_crypto.decrypt('') == ''
  assert not field_crypto.is_encrypted('')

#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

class FieldCryptoError(Exception):
  """Base class for all error exceptions defined by this package."""
  #pass

class KeyDerivationError(FieldCryptoError):
  """Exception indicating that the encryption key could not be derived from the key seed."""
  #pass

class EncryptOperationError(FieldCryptoError):
  """Exception indicating that AES-GCM encryption of a field failed."""
  #pass

class DecryptOperationError(FieldCryptoError):
  """Exception indicating that a field could not be decrypted (wrong key, tampering, or a rotated key bucket)."""
  #pass

class BadEnvelopeError(DecryptOperationError):
  """Exception indicating that a ciphertext string is not a well-formed envelope."""
  #pass

class FieldCryptoConfigError(FieldCryptoError):
  """Exception indicating an invalid configuration value."""
  #pass

class RecordNotFoundError(FieldCryptoError):
  """Exception indicating that a record does not exist in a record store collection."""
  #pass

# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package field_crypto provides a command-line tool as well as a runtime API for encrypting PII fields
(shipping names, addresses, phone numbers) before they are written to a storage backend, and decrypting
them after they are read back. Keys are derived from the deployment's host name and the current month.
"""

from .version import __version__

from .constants import (
    KEY_SIZE_BITS,
    KEY_SIZE_BYTES,
    NONCE_SIZE_BYTES,
    TAG_SIZE_BYTES,
    PBKDF2_COUNT,
    KEY_SALT,
    APP_NAME,
    ENVELOPE_TAG,
    ENVELOPE_PREFIX,
    LEGACY_MIN_LENGTH,
  )

from .util import (
    generate_key,
    generate_nonce,
    generate_key_from_seed,
    encrypt_string,
    decrypt_string,
  )

from .key_provider import KeySeed, KeyProvider, StaticKeyProvider, SeededKeyProvider
from .result import CryptoResult
from .config import FieldCryptoConfig
from .field_cipher import FieldCipher
from .records import (
    FieldPolicy,
    RecordStore,
    InMemoryRecordStore,
    EncryptedRecordStore,
    STOREFRONT_POLICIES,
    SHIPPING_ADDRESS_ENCRYPT_FIELDS,
    SHIPPING_ADDRESS_DECRYPT_FIELDS,
    PROFILE_ADDRESS_FIELDS,
    GIFT_RECIPIENT_FIELDS,
  )
from .default import (
    get_default_cipher,
    set_default_cipher,
    get_key,
    encrypt,
    decrypt,
    is_encrypted,
    encrypt_fields,
    decrypt_fields,
  )
from .internal_types import Jsonable, Record
from .exceptions import (
    FieldCryptoError,
    KeyDerivationError,
    EncryptOperationError,
    DecryptOperationError,
    BadEnvelopeError,
    FieldCryptoConfigError,
    RecordNotFoundError,
  )

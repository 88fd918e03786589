#!/usr/bin/env python3
#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants defined by this package"""

KEY_SIZE_BITS = 256
"""Size of symmetric AES encryption key in bits"""

KEY_SIZE_BYTES = KEY_SIZE_BITS // 8
"""Size of symmetric AES encryption key in bytes"""

TAG_SIZE_BYTES = 16
"""Size of the GCM authentication tag appended to each encrypted ciphertext"""

NONCE_SIZE_BYTES = 12
"""Number of random bytes used for the IV on each encrypted value"""

PBKDF2_COUNT = 100000
"""Number of hash iterations from the key seed to the AES key"""

KEY_SALT = bytes([
    0x63, 0x72, 0x79, 0x70, 0x74, 0x6f, 0x67, 0x72,
    0x61, 0x70, 0x68, 0x69, 0x63, 0x73, 0x61, 0x6c,
  ])
"""Fixed 16-byte PBKDF2 salt, shared by every deployment and time bucket. Not secret."""

KEY_SALT_SIZE_BYTES = len(KEY_SALT)
"""Number of bytes in the fixed PBKDF2 salt"""

APP_NAME = "kmetija-marosa-app"
"""Application identifier that forms the first component of the key seed"""

ENVELOPE_TAG = "ENC1"
"""Tag identifying the current ciphertext envelope format"""

ENVELOPE_PREFIX = ENVELOPE_TAG + ":"
"""Prefix of every current-format ciphertext string"""

LEGACY_MIN_LENGTH = 16
"""Untagged strings must be longer than this to be considered legacy ciphertext"""

LEGACY_ALPHABET_PATTERN = r'[A-Za-z0-9+/=]+'
"""Regex an untagged string must match in full (no trailing newline) to be considered legacy ciphertext"""

HISTORY_MONTHS = 0
"""Number of previous monthly key buckets tried when decrypting"""

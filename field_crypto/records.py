#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Encryption of PII columns in records written to and read from a storage backend"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

import copy
import json
import uuid
import logging

from .exceptions import RecordNotFoundError
from .field_cipher import FieldCipher
from .internal_types import Record

logger = logging.getLogger(__name__)

SHIPPING_ADDRESS_ENCRYPT_FIELDS = ('name', 'address', 'phone')
"""Shipping address fields encrypted when an order is placed"""

SHIPPING_ADDRESS_DECRYPT_FIELDS = ('name', 'address', 'phone', 'email')
"""Shipping address fields decrypted when orders are displayed; includes fields encrypted by older releases"""

PROFILE_ADDRESS_FIELDS = ('address',)
"""Fields of a customer profile's default shipping address that are encrypted"""

GIFT_RECIPIENT_FIELDS = ('name', 'address')
"""Fields of a gift recipient's address that are encrypted"""

class FieldPolicy:
  """The fields of one record column that are encrypted on write and decrypted on read.

  If encrypt_fields is None, the column value is itself a single encrypted string.
  """

  encrypt_fields: Optional[Sequence[str]]
  decrypt_fields: Optional[Sequence[str]]

  def __init__(self, encrypt_fields: Optional[Sequence[str]]=None, decrypt_fields: Optional[Sequence[str]]=None):
    self.encrypt_fields = None if encrypt_fields is None else tuple(encrypt_fields)
    if decrypt_fields is None:
      decrypt_fields = self.encrypt_fields
    self.decrypt_fields = None if decrypt_fields is None else tuple(decrypt_fields)

  def __repr__(self) -> str:
    return f"FieldPolicy(encrypt_fields={self.encrypt_fields!r}, decrypt_fields={self.decrypt_fields!r})"

CollectionPolicy = Mapping[str, FieldPolicy]
"""Maps a column name to the FieldPolicy for that column"""

STOREFRONT_POLICIES: Dict[str, Dict[str, FieldPolicy]] = {
    'orders': {
        'shipping_address': FieldPolicy(SHIPPING_ADDRESS_ENCRYPT_FIELDS, SHIPPING_ADDRESS_DECRYPT_FIELDS),
        'gift_recipient_address': FieldPolicy(GIFT_RECIPIENT_FIELDS),
      },
    'profiles': {
        'default_shipping_address': FieldPolicy(PROFILE_ADDRESS_FIELDS),
      },
  }
"""Which columns of the storefront's collections hold encrypted PII"""

class RecordStore:
  """Minimal interface of a storage client that keeps records in named collections.

  Records are dicts with an 'id' key. Implementations return copies; mutating a returned record
  does not change the stored one.
  """

  def insert(self, collection: str, record: Mapping[str, Any]) -> Dict[str, Any]:
    """Store a new record, assigning an 'id' if it has none, and return the stored record"""
    raise NotImplementedError()

  def get(self, collection: str, record_id: str) -> Dict[str, Any]:
    """Return a record.

    Raises:
        RecordNotFoundError: No such record
    """
    raise NotImplementedError()

  def update(self, collection: str, record_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge changes into a record and return the updated record.

    Raises:
        RecordNotFoundError: No such record
    """
    raise NotImplementedError()

  def delete(self, collection: str, record_id: str) -> None:
    """Remove a record.

    Raises:
        RecordNotFoundError: No such record
    """
    raise NotImplementedError()

  def list(self, collection: str) -> List[Dict[str, Any]]:
    """Return all records of a collection, in insertion order"""
    raise NotImplementedError()

class InMemoryRecordStore(RecordStore):
  """A RecordStore that keeps records in process memory"""

  _collections: Dict[str, Dict[str, Dict[str, Any]]]

  def __init__(self):
    self._collections = {}

  def _get_record(self, collection: str, record_id: str) -> Dict[str, Any]:
    record = self._collections.get(collection, {}).get(str(record_id))
    if record is None:
      raise RecordNotFoundError(f"No record with id '{record_id}' in collection '{collection}'")
    return record

  def insert(self, collection: str, record: Mapping[str, Any]) -> Dict[str, Any]:
    stored = copy.deepcopy(dict(record))
    if stored.get('id') is None:
      stored['id'] = str(uuid.uuid4())
    self._collections.setdefault(collection, {})[str(stored['id'])] = stored
    return copy.deepcopy(stored)

  def get(self, collection: str, record_id: str) -> Dict[str, Any]:
    return copy.deepcopy(self._get_record(collection, record_id))

  def update(self, collection: str, record_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
    record = self._get_record(collection, record_id)
    record.update(copy.deepcopy(dict(changes)))
    return copy.deepcopy(record)

  def delete(self, collection: str, record_id: str) -> None:
    self._get_record(collection, record_id)
    del self._collections[collection][str(record_id)]

  def list(self, collection: str) -> List[Dict[str, Any]]:
    return [ copy.deepcopy(r) for r in self._collections.get(collection, {}).values() ]

class EncryptedRecordStore(RecordStore):
  """A RecordStore that encrypts PII columns before handing records to another RecordStore,
  and decrypts them after reading them back.

  Each collection's policy names the same field set for both directions, so writers and readers cannot
  drift apart. A column may hold a dict, or JSON text of an object (orders store their shipping address
  as JSON text); its representation is preserved. Malformed JSON is passed through unchanged.
  """

  _store: RecordStore
  _cipher: FieldCipher
  _policies: Mapping[str, CollectionPolicy]

  def __init__(
        self,
        store: RecordStore,
        cipher: Optional[FieldCipher]=None,
        policies: Optional[Mapping[str, CollectionPolicy]]=None,
      ):
    """Wrap a RecordStore.

    Args:
        store (RecordStore):  The underlying store that persists records.
        cipher (Optional[FieldCipher], optional):
                              The cipher to use. If None, a FieldCipher built from configuration is used.
                              Defaults to None.
        policies (Optional[Mapping[str, CollectionPolicy]], optional):
                              Maps collection names to their column policies. If None, STOREFRONT_POLICIES
                              is used. Collections without a policy are passed through unchanged.
                              Defaults to None.
    """
    self._store = store
    self._cipher = FieldCipher.from_config() if cipher is None else cipher
    self._policies = STOREFRONT_POLICIES if policies is None else policies

  @property
  def cipher(self) -> FieldCipher:
    return self._cipher

  def _transform_column(self, column: str, value: Any, policy: FieldPolicy, encrypting: bool) -> Any:
    field_names = policy.encrypt_fields if encrypting else policy.decrypt_fields
    if field_names is None:
      if not isinstance(value, str):
        return value
      if encrypting:
        return value if self._cipher.is_encrypted(value) else self._cipher.encrypt(value)
      return self._cipher.decrypt(value) if self._cipher.is_encrypted(value) else value
    transform = self._cipher.encrypt_fields if encrypting else self._cipher.decrypt_fields
    if isinstance(value, dict):
      return transform(value, field_names)
    if isinstance(value, str):
      try:
        obj = json.loads(value)
      except ValueError:
        obj = None
      if not isinstance(obj, dict):
        logger.warning("Column '%s' does not hold a JSON object; leaving it unchanged", column)
        return value
      return json.dumps(transform(obj, field_names), separators=(',', ':'), ensure_ascii=False)
    return value

  def _transform(self, collection: str, record: Record, encrypting: bool) -> Dict[str, Any]:
    result = dict(record)
    policy = self._policies.get(collection)
    if policy is None:
      return result
    for column, field_policy in policy.items():
      if column in result:
        result[column] = self._transform_column(column, result[column], field_policy, encrypting)
    return result

  def encrypt_record(self, collection: str, record: Record) -> Dict[str, Any]:
    """Return a copy of record with its collection's PII columns encrypted"""
    return self._transform(collection, record, encrypting=True)

  def decrypt_record(self, collection: str, record: Record) -> Dict[str, Any]:
    """Return a copy of record with its collection's PII columns decrypted"""
    return self._transform(collection, record, encrypting=False)

  def insert(self, collection: str, record: Mapping[str, Any]) -> Dict[str, Any]:
    stored = self._store.insert(collection, self.encrypt_record(collection, dict(record)))
    return self.decrypt_record(collection, stored)

  def get(self, collection: str, record_id: str) -> Dict[str, Any]:
    return self.decrypt_record(collection, self._store.get(collection, record_id))

  def update(self, collection: str, record_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
    stored = self._store.update(collection, record_id, self.encrypt_record(collection, dict(changes)))
    return self.decrypt_record(collection, stored)

  def delete(self, collection: str, record_id: str) -> None:
    self._store.delete(collection, record_id)

  def list(self, collection: str) -> List[Dict[str, Any]]:
    return [ self.decrypt_record(collection, r) for r in self._store.list(collection) ]

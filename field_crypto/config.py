#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Configuration of field encryption from defaults, a YAML file and the environment"""

from typing import Any, Dict, Mapping, Optional

import os
import socket
import yaml

from .exceptions import FieldCryptoConfigError
from .constants import APP_NAME, PBKDF2_COUNT, HISTORY_MONTHS

ENV_CONFIG_FILE = 'FIELD_CRYPTO_CONFIG'
ENV_APP_NAME = 'FIELD_CRYPTO_APP_NAME'
ENV_HOSTNAME = 'FIELD_CRYPTO_HOSTNAME'
ENV_PBKDF2_COUNT = 'FIELD_CRYPTO_PBKDF2_COUNT'
ENV_HISTORY_MONTHS = 'FIELD_CRYPTO_HISTORY_MONTHS'
ENV_LOG_LEGACY_DECRYPT = 'FIELD_CRYPTO_LOG_LEGACY_DECRYPT'

CONFIG_SECTION = 'field_crypto'
"""Name of the YAML section holding settings; if absent the top-level mapping is used"""

_INT_SETTINGS = ('pbkdf2_count', 'history_months')
_STR_SETTINGS = ('app_name', 'hostname')
_BOOL_SETTINGS = ('log_legacy_decrypt',)

class FieldCryptoConfig:
  """Settings that determine how field encryption keys are derived"""

  app_name: str = APP_NAME
  """First component of the key seed"""

  hostname: str
  """Second component of the key seed; the deployment's host name"""

  pbkdf2_count: int = PBKDF2_COUNT
  """PBKDF2 iteration count"""

  history_months: int = HISTORY_MONTHS
  """Number of preceding monthly key buckets tried when decrypting"""

  log_legacy_decrypt: bool = True
  """Log a warning whenever an untagged legacy ciphertext is decrypted"""

  def __init__(self, **kwargs: Any):
    self.hostname = socket.gethostname()
    self.update(kwargs)

  def update(self, settings: Mapping[str, Any]) -> None:
    """Apply settings, ignoring None values.

    Raises:
        FieldCryptoConfigError: Unknown setting or invalid value
    """
    for name, value in settings.items():
      if value is None:
        continue
      if name in _INT_SETTINGS:
        value = _to_int(name, value)
        if name == 'pbkdf2_count' and value < 1:
          raise FieldCryptoConfigError(f"pbkdf2_count must be positive, got {value}")
        if name == 'history_months' and value < 0:
          raise FieldCryptoConfigError(f"history_months must not be negative, got {value}")
      elif name in _STR_SETTINGS:
        if not isinstance(value, str) or value == '':
          raise FieldCryptoConfigError(f"{name} must be a non-empty string")
      elif name in _BOOL_SETTINGS:
        value = _to_bool(name, value)
      else:
        raise FieldCryptoConfigError(f"Unknown field_crypto setting: {name}")
      setattr(self, name, value)

  def as_dict(self) -> Dict[str, Any]:
    return dict(
        app_name=self.app_name,
        hostname=self.hostname,
        pbkdf2_count=self.pbkdf2_count,
        history_months=self.history_months,
        log_legacy_decrypt=self.log_legacy_decrypt,
      )

  @classmethod
  def load(
        cls,
        config_file: Optional[str]=None,
        environ: Optional[Mapping[str, str]]=None,
        **overrides: Any
      ) -> 'FieldCryptoConfig':
    """Load configuration. Later sources override earlier ones: defaults, YAML file, environment, overrides.

    Args:
        config_file (Optional[str], optional):
                    Path of a YAML file. If None, environment variable FIELD_CRYPTO_CONFIG is used,
                    and if that is unset no file is read. Defaults to None.
        environ (Optional[Mapping[str, str]], optional):
                    The environment to read. Defaults to os.environ.
        **overrides: Explicit settings; None values are ignored.

    Raises:
        FieldCryptoConfigError: The file cannot be parsed, or a setting is invalid
    """
    if environ is None:
      environ = os.environ
    config = cls()
    if config_file is None:
      config_file = environ.get(ENV_CONFIG_FILE, '') or None
    if config_file is not None:
      config.update(load_config_file(config_file))
    config.update(dict(
        app_name=environ.get(ENV_APP_NAME, '') or None,
        hostname=environ.get(ENV_HOSTNAME, '') or None,
        pbkdf2_count=environ.get(ENV_PBKDF2_COUNT, '') or None,
        history_months=environ.get(ENV_HISTORY_MONTHS, '') or None,
        log_legacy_decrypt=environ.get(ENV_LOG_LEGACY_DECRYPT, '') or None,
      ))
    config.update(overrides)
    return config

def load_config_file(config_file: str) -> Dict[str, Any]:
  """Read settings from a YAML document, from its "field_crypto" section if present."""
  try:
    with open(config_file, encoding='utf-8') as f:
      config_obj = yaml.safe_load(f)
  except (OSError, yaml.YAMLError) as e:
    raise FieldCryptoConfigError(f"Unable to read config file {config_file}") from e
  if config_obj is None:
    return {}
  if not isinstance(config_obj, dict):
    raise FieldCryptoConfigError(f"Config file {config_file} must contain a mapping")
  section = config_obj.get(CONFIG_SECTION, config_obj)
  if not isinstance(section, dict):
    raise FieldCryptoConfigError(f"'{CONFIG_SECTION}' in config file {config_file} must be a mapping")
  return section

def _to_int(name: str, value: Any) -> int:
  if isinstance(value, bool):
    raise FieldCryptoConfigError(f"{name} must be an integer, got {value!r}")
  try:
    return int(value)
  except (TypeError, ValueError) as e:
    raise FieldCryptoConfigError(f"{name} must be an integer, got {value!r}") from e

def _to_bool(name: str, value: Any) -> bool:
  if isinstance(value, bool):
    return value
  lvalue = str(value).strip().lower()
  if lvalue in [ 'true', 't', 'yes', 'y', '1' ]:
    return True
  if lvalue in [ 'false', 'f', 'no', 'n', '0' ]:
    return False
  raise FieldCryptoConfigError(f"{name} must be a boolean, got {value!r}")

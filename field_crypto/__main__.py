#!/usr/bin/env python3
#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Command-line interface for field_crypto package"""


from typing import Optional, Sequence, List, Dict, TextIO, Any, cast

import sys
import argparse
#import argcomplete # type: ignore[import]
import json
import logging
import colorama # type: ignore[import]
from colorama import Fore, Style
from pygments import highlight, lexers, formatters
from Cryptodome.Hash import SHA256

# NOTE: this module runs with -m; do not use relative imports
from field_crypto import (
    FieldCipher,
    FieldCryptoConfig,
    SeededKeyProvider,
    Jsonable,
    FieldCryptoError,
    __version__ as pkg_version,
  )

def is_colorizable(stream: TextIO) -> bool:
  is_a_tty = hasattr(stream, 'isatty') and stream.isatty()
  return is_a_tty

class CmdExitError(RuntimeError):
  exit_code: int

  def __init__(self, exit_code: int, msg: Optional[str]=None):
    if msg is None:
      msg = f"Command exited with return code {exit_code}"
    super().__init__(msg)
    self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
  pass

class NoExitArgumentParser(argparse.ArgumentParser):
  def exit(self, status=0, message=None):
    if message:
      self._print_message(message, sys.stderr)
    raise ArgparseExitError(status, message)

class CommandHandler:
  _argv: Optional[Sequence[str]]
  _parser: argparse.ArgumentParser
  _args: argparse.Namespace
  _colorize_stdout: bool = False
  _colorize_stderr: bool = False
  _compact: bool = False
  _raw: bool = False
  _encoding: str = 'utf-8'
  _output_file: Optional[str] = None
  _config: Optional[FieldCryptoConfig] = None
  _cipher: Optional[FieldCipher] = None

  def __init__(self, argv: Optional[Sequence[str]]=None):
    self._argv = argv

  def ecolor(self, codes: str) -> str:
    return codes if self._colorize_stderr else ""

  def pretty_print(
        self,
        value: Jsonable,
        compact: Optional[bool]=None,
        colorize: Optional[bool]=None,
        raw: Optional[bool]=None,
      ):
    if raw is None:
      raw = self._raw
    if raw and isinstance(value, str):
      self.write_text(value)
      return

    if compact is None:
      compact = self._compact
    if colorize is None:
      colorize = True

    def emit_to(f: TextIO):
      final_colorize = colorize and ((f is sys.stdout and self._colorize_stdout) or (f is sys.stderr and self._colorize_stderr))

      if compact:
        json_text = json.dumps(value, separators=(',', ':'), ensure_ascii=False)
      else:
        json_text = json.dumps(value, indent=2, ensure_ascii=False)
      if final_colorize:
        json_text = highlight(json_text, lexers.JsonLexer(), formatters.TerminalFormatter())  # pylint: disable=no-member
      else:
        json_text += '\n'
      f.write(json_text)

    output_file = self._output_file
    if output_file is None:
      emit_to(sys.stdout)
    else:
      with open(output_file, "w", encoding=self._encoding) as f:
        emit_to(f)

  def write_text(self, text: str) -> None:
    output_file = self._output_file
    if output_file is None:
      sys.stdout.write(text)
    else:
      with open(output_file, 'w', encoding=self._encoding) as f:
        f.write(text)

  def get_config(self) -> FieldCryptoConfig:
    if self._config is None:
      args = self._args
      self._config = FieldCryptoConfig.load(
          config_file=args.config_file,
          app_name=args.app_name,
          hostname=args.hostname,
          pbkdf2_count=args.hash_iterations,
          history_months=args.history_months,
        )
    return self._config

  def get_cipher(self) -> FieldCipher:
    if self._cipher is None:
      self._cipher = FieldCipher.from_config(self.get_config())
    return self._cipher

  def read_input(self, value: Optional[str], what: str) -> str:
    args = self._args
    use_stdin: bool = args.use_stdin
    input_file: Optional[str] = args.input_file
    if use_stdin:
      if input_file is None:
        input_file = '/dev/stdin'
      else:
        raise FieldCryptoError("Only one of --stdin and --input can be provided")
    if value is None:
      if input_file is None:
        raise FieldCryptoError(f"One of {what} parameter, --stdin, or --input must be provided")
      with open(input_file, encoding=self._encoding) as f:
        value = f.read()
    elif not input_file is None:
      raise FieldCryptoError(f"Only one of {what} parameter, --stdin, and --input can be provided")
    return value

  def read_record(self) -> Dict[str, Any]:
    text = self.read_input(self._args.record, 'record')
    record = json.loads(text)
    if not isinstance(record, dict):
      raise FieldCryptoError("The record must be a JSON object")
    return cast(Dict[str, Any], record)

  def get_field_names(self) -> List[str]:
    field_names: Optional[List[str]] = self._args.field_names
    if not field_names:
      raise FieldCryptoError("At least one --field must be provided")
    return field_names

  def cmd_bare(self) -> int:
    print("A command is required", file=sys.stderr)
    return 1

  def cmd_key_info(self) -> int:
    cipher = self.get_cipher()
    provider = cipher.key_provider
    if not isinstance(provider, SeededKeyProvider):
      raise FieldCryptoError("key-info requires a seeded key provider")
    seeds = provider.seeds()
    fingerprint = SHA256.new(cipher.get_key()).hexdigest()[:16]
    result: Dict[str, Jsonable] = dict(
        app_name=provider.app_name,
        hostname=provider.hostname,
        bucket=f"{seeds[0].year:04d}-{seeds[0].month:02d}",
        decrypt_buckets=[ f"{s.year:04d}-{s.month:02d}" for s in seeds ],
        pbkdf2_count=provider.pbkdf2_count,
        key_fingerprint=fingerprint,
      )
    self.pretty_print(result)
    return 0

  def cmd_encrypt(self) -> int:
    plaintext = self.read_input(self._args.value, 'value')
    cipher = self.get_cipher()
    ciphertext = cipher.try_encrypt(plaintext).value
    self.write_text(ciphertext)
    return 0

  def cmd_decrypt(self) -> int:
    args = self._args
    ciphertext = self.read_input(args.ciphertext, 'ciphertext').strip()
    cipher = self.get_cipher()
    strict: bool = args.strict
    if strict:
      plaintext = cipher.try_decrypt(ciphertext).value
    else:
      plaintext = cipher.decrypt(ciphertext)
    self.pretty_print(plaintext)
    return 0

  def cmd_is_encrypted(self) -> int:
    self.pretty_print(FieldCipher.is_encrypted(self._args.value))
    return 0

  def cmd_encrypt_fields(self) -> int:
    record = self.read_record()
    result = self.get_cipher().encrypt_fields(record, self.get_field_names())
    self.pretty_print(result)
    return 0

  def cmd_decrypt_fields(self) -> int:
    record = self.read_record()
    result = self.get_cipher().decrypt_fields(record, self.get_field_names())
    self.pretty_print(result)
    return 0

  def cmd_version(self) -> int:
    self.pretty_print(pkg_version)
    return 0

  def add_input_args(self, parser: argparse.ArgumentParser, what: str) -> None:
    parser.add_argument('--stdin', dest="use_stdin", action='store_true', default=False,
                        help=f'Read the {what} from stdin instead of the commandline')
    parser.add_argument('-i', '--input', dest="input_file", default=None,
                        help=f'Read the {what} from the specified file instead of the commandline')

  def run(self) -> int:
    """Run the field-crypto command-line tool with provided arguments

    Args:
        argv (Optional[Sequence[str]], optional):
            A list of commandline arguments (NOT including the program as argv[0]!),
            or None to use sys.argv[1:]. Defaults to None.

    Returns:
        int: The exit code that would be returned if this were run as a standalone command.
    """
    parser = NoExitArgumentParser(description="Encrypt and decrypt PII fields with a deployment-derived key.")


    # ======================= Main command

    self._parser = parser
    parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                        help='Display detailed exception information')
    parser.add_argument('-M', '--monochrome', action='store_true', default=False,
                        help='Output to stdout/stderr in monochrome. Default is to colorize if stream is a compatible terminal')
    parser.add_argument('-c', '--compact', action='store_true', default=False,
                        help='Compact instead of pretty-printed output')
    parser.add_argument('-r', '--raw', action='store_true', default=False,
                        help='''Output raw strings directly, not json-encoded.
                                Values embedded in structured results are not affected.''')
    parser.add_argument('-o', '--output', dest="output_file", default=None,
                        help='Write output value to the specified file instead of stdout')
    parser.add_argument('--text-encoding', default='utf-8',
                        help='The encoding used for text. Default  is utf-8')
    parser.add_argument('--log-level', default='WARNING',
                        choices=[ 'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL' ],
                        help='Level of log messages written to stderr. Default is WARNING')
    parser.add_argument('--config-file', '-C', default=None,
                        help='''A YAML document with settings in its top level dict or in a "field_crypto"
                                property. By default environment variable FIELD_CRYPTO_CONFIG is used''')
    parser.add_argument('--app-name', default=None,
                        help='''The application identifier used in the key seed. By default, environment
                                variable FIELD_CRYPTO_APP_NAME or "kmetija-marosa-app" is used''')
    parser.add_argument('--hostname', default=None,
                        help='''The deployment host name used in the key seed. By default, environment
                                variable FIELD_CRYPTO_HOSTNAME or this machine's host name is used''')
    parser.add_argument('--hash-iterations', '-n', type=int, default=None,
                        help='''The number of SHA-256 PBKDF2 iterations applied to the key seed to generate the
                                AES-256 key. The default is 100,000, which is required to read values written
                                by the storefront.''')
    parser.add_argument('--history-months', type=int, default=None,
                        help='''The number of preceding monthly key buckets to try when decrypting. Default is 0.''')
    parser.set_defaults(func=self.cmd_bare)

    subparsers = parser.add_subparsers(
                        title='Commands',
                        description='Valid commands',
                        help='Additional help available with "<command-name> -h"')


    # ======================= version

    parser_version = subparsers.add_parser('version',
                            description='''Display version information. JSON-quoted string. If a raw string is desired, use -r.''')
    parser_version.set_defaults(func=self.cmd_version)

    # ======================= key-info

    parser_key_info = subparsers.add_parser('key-info',
                            description='''Display the key seed components, time bucket, and a fingerprint of the derived key.
                                           The key itself is never displayed.''')
    parser_key_info.set_defaults(func=self.cmd_key_info)

    # ======================= encrypt

    parser_encrypt = subparsers.add_parser('encrypt', description="Encrypt a field value into an ENC1: ciphertext")
    self.add_input_args(parser_encrypt, 'value')
    parser_encrypt.add_argument('value',
                        nargs='?',
                        default=None,
                        help="""The plaintext to be encrypted. Omit this parameter if --input or --stdin is provided.""")
    parser_encrypt.set_defaults(func=self.cmd_encrypt)

    # ======================= decrypt

    parser_decrypt = subparsers.add_parser('decrypt', description="Get the plaintext value associated with an encrypted field value")
    self.add_input_args(parser_decrypt, 'ciphertext')
    parser_decrypt.add_argument('--strict', action='store_true', default=False,
                        help='''Fail if the value cannot be decrypted, instead of echoing it unchanged''')
    parser_decrypt.add_argument('ciphertext',
                        nargs='?',
                        default=None,
                        help="""The ciphertext to be decrypted. Omit this parameter if --input or --stdin is provided.""")
    parser_decrypt.set_defaults(func=self.cmd_decrypt)

    # ======================= is-encrypted

    parser_is_encrypted = subparsers.add_parser('is-encrypted',
                            description="Report whether a field value looks encrypted (JSON true or false)")
    parser_is_encrypted.add_argument('value', help="The field value to inspect")
    parser_is_encrypted.set_defaults(func=self.cmd_is_encrypted)

    # ======================= encrypt-fields / decrypt-fields

    for cmd_name, description, func in [
          ('encrypt-fields', "Encrypt the named fields of a JSON record", self.cmd_encrypt_fields),
          ('decrypt-fields', "Decrypt the named fields of a JSON record", self.cmd_decrypt_fields),
        ]:
      parser_fields = subparsers.add_parser(cmd_name, description=description)
      parser_fields.add_argument('-f', '--field', dest='field_names', action='append', default=None,
                          help='Name of a field to transform. May be repeated.')
      self.add_input_args(parser_fields, 'record')
      parser_fields.add_argument('record',
                          nargs='?',
                          default=None,
                          help="""The record, as a JSON object. Omit this parameter if --input or --stdin is provided.""")
      parser_fields.set_defaults(func=func)

    # =========================================================

    try:
      args = parser.parse_args(self._argv)
    except ArgparseExitError as ex:
      return ex.exit_code
    traceback: bool = args.traceback
    try:
      self._args = args
      self._raw = args.raw
      self._compact = args.compact
      self._output_file = args.output_file
      self._encoding = args.text_encoding
      logging.basicConfig(level=getattr(logging, args.log_level), stream=sys.stderr,
                          format='%(levelname)s %(name)s: %(message)s')
      monochrome: bool = args.monochrome
      if not monochrome:
        self._colorize_stdout = is_colorizable(sys.stdout)
        self._colorize_stderr = is_colorizable(sys.stderr)
        if self._colorize_stdout or self._colorize_stderr:
          colorama.init(wrap=False)
          if self._colorize_stdout:
            new_stream = colorama.AnsiToWin32(sys.stdout)
            if new_stream.should_wrap():
              sys.stdout = new_stream
          if self._colorize_stderr:
            new_stream = colorama.AnsiToWin32(sys.stderr)
            if new_stream.should_wrap():
              sys.stderr = new_stream
      rc = args.func()
    except Exception as ex:
      if isinstance(ex, CmdExitError):
        rc = ex.exit_code
      else:
        rc = 1
      if rc != 0:
        if traceback:
          raise

        print(f"{self.ecolor(Fore.RED)}field-crypto: error: {ex}{self.ecolor(Style.RESET_ALL)}", file=sys.stderr)
    return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
  try:
    rc = CommandHandler(argv).run()
  except CmdExitError as ex:
    rc = ex.exit_code
  return rc

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
  sys.exit(run())

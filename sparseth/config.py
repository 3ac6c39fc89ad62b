"""Loading, validation and parsing of the account monitoring configuration."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from .logger import Logger
from .proof import keccak256

ADDRESS_LENGTH = 20
HASH_LENGTH = 32

_HEX_UINT = re.compile(r"[0-9a-fA-F]+")
_HEX_PAIRS = re.compile(r"(?:[0-9a-fA-F]{2})*")
_ABI_TYPES = frozenset(
    {"", "function", "constructor", "fallback", "receive", "event", "error"})
_RAW_FIELDS = ("address", "abi_path", "head_slot", "count_slot")


class ConfigError(Exception):
    """Raised when the configuration cannot be read, validated or parsed."""


@dataclass(frozen=True)
class EventConfig:
    """Settings for monitoring the events of a contract."""

    abi: tuple[dict[str, Any], ...]
    head_slot: bytes


@dataclass(frozen=True)
class SparseConfig:
    """Settings for monitoring the state of a sparse contract."""

    count_slot: bytes


@dataclass(frozen=True)
class ContractConfig:
    """Contract-specific monitoring settings of an account."""

    event: Optional[EventConfig] = None
    state: Optional[SparseConfig] = None

    def has_event_config(self) -> bool:
        return self.event is not None

    def has_state_config(self) -> bool:
        return self.state is not None


@dataclass(frozen=True)
class AccountConfig:
    """A single account to monitor."""

    address: bytes
    contract_config: ContractConfig = field(default_factory=ContractConfig)

    @property
    def hex(self) -> str:
        """The account address in checksummed hex form."""
        return checksum_address(self.address)


@dataclass(frozen=True)
class AccountsConfig:
    """All accounts to monitor."""

    accounts: list[AccountConfig] = field(default_factory=list)


def _strip_prefix(s: str) -> str:
    return s[2:] if len(s) >= 2 and s[0] == "0" and s[1] in "xX" else s


def _from_hex(s: str, size: int) -> bytes:
    """Decode hex leniently into size bytes, cropping or padding on the left."""
    s = _strip_prefix(s)
    if len(s) % 2:
        s = "0" + s
    data = bytes.fromhex(_HEX_PAIRS.match(s).group())
    return data[-size:].rjust(size, b"\x00")


def is_hex_address(s: str) -> bool:
    """Tell whether s is 40 hex digits, optionally prefixed with 0x."""
    s = _strip_prefix(s)
    return len(s) == 2 * ADDRESS_LENGTH and _HEX_UINT.fullmatch(s) is not None


def hex_to_address(s: str) -> bytes:
    """Convert hex text to a 20-byte address, cropping from the left."""
    return _from_hex(s, ADDRESS_LENGTH)


def hex_to_hash(s: str) -> bytes:
    """Convert hex text to a 32-byte hash, cropping from the left."""
    return _from_hex(s, HASH_LENGTH)


def checksum_address(address: bytes) -> str:
    """Return the mixed-case checksummed hex form of a 20-byte address."""
    address = bytes(address)
    if len(address) != ADDRESS_LENGTH:
        raise ValueError(
            f"address must be {ADDRESS_LENGTH} bytes, got {len(address)}")
    lower = address.hex()
    digest = keccak256(lower.encode("ascii")).hex()
    return "0x" + "".join(c.upper() if c > "9" and int(h, 16) > 7 else c
                          for c, h in zip(lower, digest))


def _check_hex_uint(s: str) -> None:
    trimmed = s[2:] if s.startswith("0x") else s
    if _HEX_UINT.fullmatch(trimmed) is None or int(trimmed, 16) >= 1 << 64:
        raise ConfigError(f"invalid hex number: {s}")


class _TextLoader(yaml.SafeLoader):
    """Safe loader that keeps every scalar except null as text."""


_TextLoader.yaml_implicit_resolvers = {
    first: [(tag, rx) for tag, rx in resolvers if tag == "tag:yaml.org,2002:null"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _raw_accounts(doc: Any) -> list[dict[str, str]]:
    """The account entries of the document, each field as text ("" if unset)."""
    if doc is None:
        return []
    if not isinstance(doc, dict):
        raise ConfigError(f"cannot unmarshal {type(doc).__name__} into config")
    entries = doc.get("accounts") or []
    if not isinstance(entries, list):
        raise ConfigError("accounts must be a sequence")
    accounts = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ConfigError("account entry must be a mapping")
        acc = {}
        for key in _RAW_FIELDS:
            value = entry.get(key)
            if value is not None and not isinstance(value, str):
                raise ConfigError(
                    f"cannot unmarshal {type(value).__name__} into field {key}")
            acc[key] = value or ""
        accounts.append(acc)
    return accounts


class _Validator:
    def __init__(self, logger: Logger) -> None:
        self._log = logger.with_("component", "config-validator")

    def validate(self, accounts: list[dict[str, str]]) -> None:
        for idx, acc in enumerate(accounts):
            self._log.debug("validate account", "address", acc["address"], "index", idx)
            try:
                self._validate_account(acc)
            except ConfigError as exc:
                raise ConfigError(
                    f"failed to validate account at index {idx}: {exc}") from exc

    def _check_slot(self, acc: dict[str, str], key: str, label: str, attr: str) -> None:
        if not acc[key]:
            return
        try:
            _check_hex_uint(acc[key])
        except ConfigError as exc:
            self._log.error(f"{label} must be a valid hex uint", attr, acc[key])
            raise ConfigError(f"invalid {label}: {exc}") from exc

    def _validate_account(self, acc: dict[str, str]) -> None:
        address = acc["address"]
        if not address:
            self._log.error("address must not be empty")
            raise ConfigError("address is empty")
        if not is_hex_address(address):
            self._log.error("address must be a valid hex address", "address", address)
            raise ConfigError(f"invalid address: {address}")
        self._check_slot(acc, "head_slot", "head slot", "headSlot")
        if bool(acc["abi_path"]) != bool(acc["head_slot"]):
            self._log.error("both ABI and head slot must be specified for event monitoring")
            raise ConfigError(
                f"invalid event config for account {address}: "
                "both ABI and head slot must be specified")
        self._check_slot(acc, "count_slot", "count slot", "countSlot")


def _parse_abi(path: str) -> tuple[dict[str, Any], ...]:
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise ConfigError(f"failed to read file {path}: {exc}") from exc
    try:
        entries = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ConfigError(f"failed to parse ABI: {exc}") from exc
    if entries is None:
        return ()
    if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
        raise ConfigError("failed to parse ABI: abi: expected a JSON array of objects")
    for entry in entries:
        if entry.get("type", "") not in _ABI_TYPES:
            raise ConfigError(
                f"failed to parse ABI: abi: could not recognize type "
                f"{entry.get('type')} of field {entry.get('name', '')}")
    return tuple(entries)


class _Parser:
    def __init__(self, logger: Logger) -> None:
        self._log = logger.with_("component", "config-parser")

    def parse(self, accounts: list[dict[str, str]]) -> AccountsConfig:
        parsed = []
        for acc in accounts:
            try:
                parsed.append(self._parse_account(acc))
            except ConfigError as exc:
                raise ConfigError(f"failed to parse account: {exc}") from exc
        return AccountsConfig(accounts=parsed)

    def _parse_account(self, acc: dict[str, str]) -> AccountConfig:
        self._log.debug("parse account", "address", acc["address"])
        address = hex_to_address(acc["address"])
        addr_hex = checksum_address(address)

        self._log.debug("parse event config", "address", addr_hex)
        event = None
        if acc["abi_path"] or acc["head_slot"]:
            try:
                abi = _parse_abi(acc["abi_path"])
            except ConfigError as exc:
                raise ConfigError(
                    f"failed to parse event config: failed to parse ABI for "
                    f"account {acc['address']}: {exc}") from exc
            event = EventConfig(abi=abi, head_slot=hex_to_hash(acc["head_slot"]))
        else:
            self._log.debug("no event config found for account", "address", acc["address"])

        self._log.debug("parse sparse config", "address", addr_hex)
        state = None
        if acc["count_slot"]:
            state = SparseConfig(count_slot=hex_to_hash(acc["count_slot"]))
        else:
            self._log.debug("no sparse contract config found for account",
                            "address", acc["address"])

        return AccountConfig(address=address,
                             contract_config=ContractConfig(event=event, state=state))


class Loader:
    """Reads, validates and parses the main configuration file."""

    def __init__(self, logger: Logger) -> None:
        self._log = logger.with_("component", "config-loader")
        self._validator = _Validator(logger)
        self._parser = _Parser(logger)

    def load(self, path: Union[str, Path]) -> AccountsConfig:
        """Load the configuration at path."""
        self._log.info("load config from file", "path", str(path))
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise ConfigError(f"failed to read config file: {exc}") from exc
        try:
            accounts = _raw_accounts(yaml.load(data, Loader=_TextLoader))
        except (yaml.YAMLError, ConfigError) as exc:
            raise ConfigError(f"failed to parse config: {exc}") from exc
        try:
            self._validator.validate(accounts)
        except ConfigError as exc:
            raise ConfigError(f"failed to validate config: {exc}") from exc
        return self._parser.parse(accounts)
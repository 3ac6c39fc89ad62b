"""Verification of Merkle-Patricia trie proofs for accounts and storage."""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from Crypto.Hash import keccak

EMPTY_ROOT_HASH = bytes.fromhex(
    "56e81f171bcc55a6ff8345e692c0f86e5b48e01b996cadc001622fb5e363b421")

_HASH_LEN = 32
_TERMINATOR = 16
_STRING, _LIST = 0, 1

BytesLike = Union[bytes, bytearray, memoryview, str]


class ProofError(Exception):
    """Raised when a proof is incomplete, malformed or does not match."""


@dataclass(frozen=True)
class Account:
    """An account as stored in the state trie."""

    nonce: int
    balance: int
    storage_root: bytes
    code_hash: bytes


def keccak256(data: bytes) -> bytes:
    """Return the Keccak-256 digest of data."""
    return keccak.new(digest_bits=256, data=bytes(data)).digest()


def _as_bytes(value: BytesLike, size: int, name: str) -> bytes:
    if isinstance(value, str):
        value = bytes.fromhex(value[2:] if value[:2].lower() == "0x" else value)
    value = bytes(value)
    if len(value) != size:
        raise ValueError(f"{name} must be {size} bytes, got {len(value)}")
    return value


def _split(buf: bytes) -> tuple[int, bytes, bytes]:
    """Split off the first RLP item: (kind, content, rest)."""
    if not buf:
        raise ProofError("rlp: unexpected end of input")
    first = buf[0]
    if first < 0x80:
        return _STRING, buf[:1], buf[1:]
    kind = _STRING if first < 0xC0 else _LIST
    short = first - (0x80 if kind == _STRING else 0xC0)
    if short < 56:
        offset, size = 1, short
        if kind == _STRING and size == 1 and len(buf) > 1 and buf[1] < 0x80:
            raise ProofError("rlp: non-canonical size information")
    else:
        offset = 1 + short - 55
        if len(buf) < offset:
            raise ProofError("rlp: unexpected end of input")
        raw = buf[1:offset]
        size = int.from_bytes(raw, "big")
        if raw[0] == 0 or size < 56:
            raise ProofError("rlp: non-canonical size information")
    end = offset + size
    if len(buf) < end:
        raise ProofError("rlp: value size exceeds available input length")
    return kind, buf[offset:end], buf[end:]


def _expect(buf: bytes, kind: int) -> bytes:
    """Content of the single RLP item in buf, which must be of the given kind."""
    found, content, rest = _split(buf)
    if found != kind:
        raise ProofError("rlp: expected " + ("List" if kind == _LIST else "String"))
    if rest:
        raise ProofError("rlp: input contains more than one value")
    return content


def _items(buf: bytes) -> list[tuple[int, bytes, bytes]]:
    """All items of a list's content as (kind, content, raw encoding)."""
    items = []
    while buf:
        kind, content, rest = _split(buf)
        items.append((kind, content, buf[:len(buf) - len(rest)]))
        buf = rest
    return items


def _decode_uint(content: bytes, max_bytes: Optional[int]) -> int:
    if max_bytes is not None and len(content) > max_bytes:
        raise ProofError("rlp: integer too large")
    if content[:1] == b"\x00":
        raise ProofError("rlp: non-canonical integer (leading zero bytes)")
    return int.from_bytes(content, "big")


def _decode_account(data: bytes) -> Account:
    items = _items(_expect(data, _LIST))
    if any(kind != _STRING for kind, _, _ in items):
        raise ProofError("rlp: expected String")
    if len(items) != 4:
        raise ProofError(f"rlp: expected 4 account fields, got {len(items)}")
    nonce, balance, root, code = (content for _, content, _ in items)
    if len(root) != _HASH_LEN or len(code) != _HASH_LEN:
        raise ProofError("rlp: input string has wrong size for 32-byte hash")
    return Account(_decode_uint(nonce, 8), _decode_uint(balance, None), root, code)


def _key_to_nibbles(key: bytes) -> bytes:
    return bytes(n for byte in key for n in (byte >> 4, byte & 0x0F)) + bytes([_TERMINATOR])


def _compact_to_nibbles(compact: bytes) -> bytes:
    if not compact:
        return b""
    base = _key_to_nibbles(compact)
    if base[0] < 2:
        base = base[:-1]
    return base[2 - (base[0] & 1):]


def _ref(kind: int, content: bytes, raw: bytes) -> Optional[tuple[str, bytes]]:
    """A child reference: ("node", embedded encoding), ("hash", digest) or None."""
    if kind == _LIST:
        if len(raw) > _HASH_LEN:
            raise ProofError(f"oversized embedded node (size is {len(raw)} "
                             f"bytes, want size < {_HASH_LEN})")
        return "node", raw
    if not content:
        return None
    if len(content) == _HASH_LEN:
        return "hash", content
    raise ProofError(f"invalid RLP string size {len(content)} (want 0 or 32)")


def _step(buf: bytes, key: bytes) -> tuple[bytes, Optional[tuple[str, bytes]]]:
    """Follow key through one encoded node: (rest of key, next reference)."""
    if not buf:
        raise ProofError("unexpected end of input")
    try:
        items = _items(_expect(buf, _LIST))
    except ProofError as exc:
        raise ProofError(f"decode error: {exc}") from exc
    if len(items) == 2:
        (kkind, kbuf, _), (vkind, vbuf, vraw) = items
        if kkind != _STRING:
            raise ProofError("rlp: expected String")
        nibbles = _compact_to_nibbles(kbuf)
        if nibbles and nibbles[-1] == _TERMINATOR:
            if vkind != _STRING:
                raise ProofError("invalid value node: rlp: expected String")
            child: Optional[tuple[str, bytes]] = ("value", vbuf)
        else:
            child = _ref(vkind, vbuf, vraw)
        if not key.startswith(nibbles):
            return key, None
        return key[len(nibbles):], child
    if len(items) == 17:
        children = []
        for idx, item in enumerate(items[:16]):
            try:
                children.append(_ref(*item))
            except ProofError as exc:
                raise ProofError(f"[{idx}]: {exc}") from exc
        vkind, value, _ = items[16]
        if vkind != _STRING:
            raise ProofError("rlp: expected String")
        children.append(("value", value) if value else None)
        if not key:
            raise ProofError("key exhausted at branch node")
        return key[1:], children[key[0]]
    raise ProofError(f"invalid number of list elements: {len(items)}")


def _verify_proof(root: bytes, key: bytes,
                  proof_nodes: Iterable[bytes]) -> Optional[bytes]:
    """Return the RLP-encoded value at key, or None if the key is absent."""
    proof = {keccak256(node): bytes(node) for node in proof_nodes}
    nibbles, wanted = _key_to_nibbles(key), root
    for idx in itertools.count():
        buf = proof.get(wanted)
        if buf is None:
            raise ProofError(f"proof node {idx} (hash {wanted.hex()}) missing")
        ref: Optional[tuple[str, bytes]] = ("node", buf)
        try:
            while ref is not None and ref[0] == "node":
                nibbles, ref = _step(ref[1], nibbles)
        except ProofError as exc:
            raise ProofError(f"bad proof node {idx}: {exc}") from exc
        if ref is None:
            return None
        if ref[0] == "value":
            return ref[1]
        wanted = ref[1]
    return None


def verify_account_proof(state_root: BytesLike, address: BytesLike,
                         proof_nodes: Iterable[bytes]) -> Optional[Account]:
    """Verify an account proof; return None for a proven absent account."""
    root = _as_bytes(state_root, _HASH_LEN, "state root")
    addr = _as_bytes(address, 20, "address")
    data = _verify_proof(root, keccak256(addr), proof_nodes)
    if data is None:
        return None
    try:
        return _decode_account(data)
    except ProofError as exc:
        raise ProofError(f"failed to decode account: {exc}") from exc


def verify_storage_proof(storage_root: BytesLike, slot_key: BytesLike,
                         proof_nodes: Iterable[bytes]) -> Optional[bytes]:
    """Verify a storage proof for a hashed slot key; None if no value is set."""
    root = _as_bytes(storage_root, _HASH_LEN, "storage root")
    key = _as_bytes(slot_key, _HASH_LEN, "slot key")
    if root == EMPTY_ROOT_HASH:
        return None
    data = _verify_proof(root, key, proof_nodes)
    if data is None:
        return None
    try:
        return _expect(data, _STRING)
    except ProofError as exc:
        raise ProofError(f"failed to decode value: {exc}") from exc
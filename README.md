# sparseth

Building blocks for a node that watches a handful of Ethereum accounts
without keeping the full chain state:

- **Key-value storage** with one interface (`sparseth.storage.base.KeyValueStore`)
  and two backends: an in-memory store (`sparseth.storage.memory.MemoryDatabase`)
  and a persistent store kept in a directory (`sparseth.storage.disk.DiskDatabase`).
  Both support batches, ordered prefix iteration and range deletion.
- **Merkle-Patricia proof verification** (`sparseth.proof`) for account
  proofs against a state root and storage proofs against a storage root, as
  returned by `eth_getProof`.
- **Account configuration** (`sparseth.config`) loaded from a YAML file and
  validated before use.
- **Structured logging** (`sparseth.logger`) with key/value context and a
  coloured terminal handler.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Storage

```python
from sparseth.storage.base import KeyNotFoundError
from sparseth.storage.memory import MemoryDatabase

db = MemoryDatabase()
db.put(b"alpha", b"1")
db.put(b"bravo", b"2")

assert db.has(b"alpha")
assert db.get(b"bravo") == b"2"

try:
    db.get(b"missing")
except KeyNotFoundError:
    pass

# Batches collect writes and apply them only on write().
batch = db.new_batch()
batch.put(b"charlie", b"3")
batch.delete(b"alpha")
print(batch.value_size())  # bytes of keys and values queued
batch.write()

# A batch can also be replayed onto any other writer.
other = MemoryDatabase()
batch.replay(other)

# Iteration is in binary-alphabetical key order over a snapshot,
# restricted to a prefix and starting at prefix + start.
it = db.new_iterator(b"", b"bravo")
while it.next():
    print(it.key(), it.value())
it.release()

# Iterators are also Python iterables and context managers.
with db.new_iterator() as it:
    for key, value in it:
        print(key, value)

# Delete every key in [start, end).
db.delete_range(b"bravo", b"charlie")

print(db.stat())  # "Memory DB: 1 keys stored"
db.close()
```

`DiskDatabase` offers the same operations and keeps its data in a single
file inside the given directory, which is created if needed. Batches are
applied atomically, `sync_key_value()` flushes the write-ahead log,
`compact()` reclaims unused space and `stat()` reports the file sizes.

```python
from sparseth.storage.disk import DiskDatabase

with DiskDatabase("/var/lib/sparseth/db") as db:
    db.put(b"key", b"val")
    db.sync_key_value()
    print(db.stat())
```

Both stores can be used as context managers, which close them on exit.
Reading from or writing to a closed store raises `DatabaseClosedError`;
a missing key raises `KeyNotFoundError`. Both derive from `StorageError`.

## Proof verification

```python
from sparseth.proof import ProofError, keccak256, verify_account_proof, verify_storage_proof

try:
    account = verify_account_proof(state_root, address, proof_nodes)
except ProofError:
    ...  # the proof does not match the root

if account is None:
    print("account does not exist")
else:
    print(account.nonce, account.balance, account.storage_root.hex())
    slot_key = keccak256(bytes(32))  # slot 0
    value = verify_storage_proof(account.storage_root, slot_key, storage_proof_nodes)
```

Roots, addresses and slot keys may be given as bytes or as hex strings
(with or without `0x`); proof nodes are the raw RLP-encoded trie nodes. A
valid proof of absence returns `None`; a missing, incomplete or corrupted
proof raises `ProofError`. Storage proofs against the empty storage root
(`EMPTY_ROOT_HASH`) always yield `None`.

## Configuration

Accounts to monitor are listed in a YAML file:

```yaml
accounts:
  - address: "0x1234567890123456789012345678901234567890"
    abi_path: "contracts/Monitored.abi"
    head_slot: "0x0"
    count_slot: "0x1"
  - address: "0x00000000000000000000000000000000000000aa"
```

`abi_path` and `head_slot` enable event monitoring and must be given
together; the ABI file is read as a JSON array of ABI entries.
`count_slot` enables sparse state monitoring. Slots are hexadecimal
unsigned integers that fit in 64 bits.

```python
from sparseth.config import ConfigError, Loader
from sparseth.logger import TerminalHandler, new_logger

log = new_logger(TerminalHandler())
try:
    config = Loader(log).load("accounts.yaml")
except ConfigError as exc:
    raise SystemExit(f"bad configuration: {exc}")

for account in config.accounts:
    print(account.hex)  # checksummed address
    if account.contract_config.has_event_config():
        print("  head slot", account.contract_config.event.head_slot.hex())
    if account.contract_config.has_state_config():
        print("  count slot", account.contract_config.state.count_slot.hex())
```

The helpers `is_hex_address`, `hex_to_address`, `hex_to_hash` and
`checksum_address` are available from `sparseth.config` as well.

## Logging

```python
from sparseth.logger import Level, TerminalHandler, new_logger

log = new_logger(TerminalHandler(level=Level.INFO)).with_("component", "node")
log.info("start block listener", "height", 42)
log.error("failed to connect", "err", "timeout")
```

Context is given as alternating keys and values; `with_` returns a logger
that adds its context to every message. `TerminalHandler` prints to stdout
unless another text stream is passed, and shows the `component` attribute
in brackets on every line.

## What this package does not do

It provides the storage, proof checking, configuration and logging parts
only. It has no command-line program, does not connect to an Ethereum RPC
provider, and does not follow blocks or run account monitors itself.
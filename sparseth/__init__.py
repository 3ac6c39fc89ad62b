"""Key-value storage, Merkle-Patricia proof verification, account configuration and logging for a sparse Ethereum monitoring node."""

__version__ = "0.1.0"
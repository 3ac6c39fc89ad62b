"""Key-value stores: a common interface with in-memory and on-disk backends."""
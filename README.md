# sstkit

Pure-Python tools for writing and reading sorted string table (SSTable) files
of the kind used by log-structured key-value stores. It has no dependencies
outside the standard library.

## Modules

- `sstkit.crc32c`: CRC-32C checksums. It provides `value(data)`,
  `extend(crc, data)`, and `mask(crc)` / `unmask(masked)`, which give the
  rotated-and-offset form used for checksums stored next to data.
- `sstkit.format`: `encode_fixed32` / `decode_fixed32`,
  `encode_fixed64` / `decode_fixed64`, `encode_varint` / `decode_varint`, and
  `put_length_prefixed` / `get_length_prefixed`. It also holds `BlockHandle`
  (with `encode()` and `decode_block_handle`), `Footer` (with `encode()` and
  `decode_footer`), `BlockContents`, `CompressionType`, and
  `read_block(source, handle, verify_checksums)`, which reads a block and
  checks its trailer. Malformed data raises `CorruptionError`, a subclass of
  `ValueError`.
- `sstkit.block`: `BlockBuilder` writes prefix-compressed blocks with restart
  points. Its methods are `add`, `finish`, `reset`, `current_size_estimate`
  and `is_empty`. `Block` reads a finished block back, and
  `Block.new_iterator()` returns a `BlockIterator`.
- `sstkit.filter_block`: `FilterBlockBuilder` stores one filter for each
  2 KB range of data-block offsets. `FilterBlockReader.key_may_match` queries
  those filters. Filters are built by a `FilterPolicy` that you supply.
- `sstkit.iterators`:
  - `KVIterator` is the cursor interface. Its methods are `valid`, `seek`,
    `seek_to_first`, `seek_to_last`, `next`, `prev`, `key`, `value` and
    `status`. You can iterate over it as `(key, value)` pairs or use it as a
    context manager.
  - `BytewiseComparator` orders keys by their bytes.
  - `new_empty_iterator()` and `new_error_iterator(error)` return iterators
    with no entries.
  - `new_merging_iterator(comparator, children)` returns the union of sorted
    children and keeps duplicates.
  - `new_two_level_iterator(index_iter, block_function)` chains the blocks
    that an index names.
- `sstkit.write_batch`: `WriteBatch` is a batch of puts and deletes with a
  binary form. It has `put`, `delete`, `append`, `clear`, `count`, `sequence`,
  `set_sequence`, `contents`, `records()` and `iterate(handler)`, where the
  handler is a `WriteBatchHandler`. `write_batch_from_contents` rebuilds a
  batch from its bytes.
- `sstkit.table`:
  - `TableOptions` holds the settings: comparator, block size, restart
    interval, filter policy, paranoid checks, and an optional block cache
    (any mutable mapping).
  - `TableBuilder` writes a complete table to a binary file.
  - `open_table(options, file, size)` opens a table from bytes or a seekable
    file. It returns a `Table` with `new_iterator`, `get` and
    `approximate_offset_of`.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
import io

from sstkit.iterators import BytewiseComparator, new_merging_iterator
from sstkit.table import TableBuilder, TableOptions, open_table

options = TableOptions()


def build(pairs):
    out = io.BytesIO()
    builder = TableBuilder(options, out)
    for key, value in pairs:
        builder.add(key, value)
    builder.finish()
    data = out.getvalue()
    return open_table(options, data, len(data))


fruit = build([(b"apple", b"1"), (b"banana", b"2"), (b"cherry", b"3")])
print(fruit.get(b"banana"))          # (b'banana', b'2')
for key, value in fruit.new_iterator():
    print(key, value)

veg = build([(b"beet", b"4"), (b"carrot", b"5")])
merged = new_merging_iterator(
    BytewiseComparator(), [fruit.new_iterator(), veg.new_iterator()]
)
print([key for key, _ in merged])    # apple, banana, beet, carrot, cherry
```

Rules for keys and lookups:

- Keys given to a builder must be in strictly increasing order under the
  table's comparator. If they are not, `add` raises `ValueError`.
- `Table.get(key)` returns the first entry at or after `key` in the block
  that could hold it, so compare the returned key with the one you asked
  for. It returns `None` when no block can hold the key, or when the filter
  rules it out.

A write batch round trip:

```python
from sstkit.write_batch import WriteBatch, write_batch_from_contents

batch = WriteBatch()
batch.put(b"k1", b"v1")
batch.delete(b"k2")
batch.set_sequence(100)

copy = write_batch_from_contents(batch.contents())
print(copy.count(), copy.sequence(), list(copy.records()))
```

## Limits

- **No compression.** Blocks are always written uncompressed. Reading a block
  marked as Snappy-compressed raises `CorruptionError`.
- **No ready-made filter.** No filter policy, such as a Bloom filter, is
  included. To get filter blocks, subclass `FilterPolicy` and set it in
  `TableOptions.filter_policy`.
- **Not a database.** There is no memtable, write-ahead log, version
  tracking, compaction or command-line tool. The package builds, reads and
  iterates over individual table files and write batches. Applying a batch
  to a store is up to the `WriteBatchHandler` you provide.
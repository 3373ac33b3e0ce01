"""Sorted string table files: checksums, block and table building, filters, iterators and write batches."""

__version__ = "0.1.0"
__all__ = ["block", "crc32c", "filter_block", "format", "iterators", "table", "write_batch"]
"""
Gzip stream handling for backup artifacts.

Data-only dumps are compressed on the fly while pg_dump writes them, and
.gz artifacts are decompressed to a sibling file before a restore.
Neither direction buffers the whole dump in memory.
"""

import gzip
import os
import shutil
import zlib
from typing import BinaryIO


CHUNK_SIZE = 64 * 1024
COMPRESS_LEVEL = 6


class CompressionError(Exception):
    """Raised when compressing or decompressing an artifact fails."""
    pass


def compress_stream(source: BinaryIO, output_path: str, compress_level: int = COMPRESS_LEVEL,
                    chunk_size: int = CHUNK_SIZE) -> int:
    """
    Copy a byte stream into a gzip file, chunk by chunk.

    Returns only once the gzip trailer has been written and the file closed.

    Args:
        source: Readable binary stream (e.g. a subprocess stdout pipe)
        output_path: Destination .gz file
        compress_level: Gzip compression level (1-9)
        chunk_size: Read size in bytes

    Returns:
        Number of uncompressed bytes written

    Raises:
        CompressionError: If reading the source or writing the file fails
    """
    written = 0
    try:
        with gzip.open(output_path, 'wb', compresslevel=compress_level) as out:
            while True:
                chunk = source.read(chunk_size)
                if not chunk:
                    break
                out.write(chunk)
                written += len(chunk)
    except (OSError, ValueError) as e:
        raise CompressionError(f"Failed to compress stream into {output_path}: {e}")

    return written


def decompress_file(source_path: str, output_path: str, chunk_size: int = CHUNK_SIZE) -> str:
    """
    Decompress a .gz file to output_path.

    A partially written output file is removed on failure.

    Args:
        source_path: Path to the gzip file
        output_path: Destination for the decompressed data

    Returns:
        output_path

    Raises:
        CompressionError: If the source is missing or not valid gzip data
    """
    if not os.path.exists(source_path):
        raise CompressionError(f"Compressed file not found: {source_path}")

    try:
        with gzip.open(source_path, 'rb') as src, open(output_path, 'wb') as dst:
            shutil.copyfileobj(src, dst, chunk_size)
        return output_path
    except (OSError, EOFError, ValueError, zlib.error) as e:
        # Clean up partial output on failure
        if os.path.exists(output_path):
            try:
                os.remove(output_path)
            except OSError:
                pass
        raise CompressionError(f"Failed to decompress {source_path}: {e}")

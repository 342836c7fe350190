"""JSON value serialization with optional gzip compression."""

import gzip
import json
from typing import Any

from ...core.exceptions import CacheSerializationError

GZIP_MAGIC = b"\x1f\x8b"


class CacheSerializer:
    """Serialize cache values to bytes.

    Payloads larger than ``compression_threshold`` are gzipped when
    compression is enabled. ``loads`` recognises gzip data by its magic
    number, so readers do not depend on the writer's settings.
    """

    def __init__(self, enable_compression: bool = True, compression_threshold: int = 1024, compression_level: int = 6):
        self.enable_compression = enable_compression
        self.compression_threshold = compression_threshold
        self.compression_level = compression_level

    def dumps(self, value: Any) -> bytes:
        try:
            data = json.dumps(value, separators=(",", ":"), sort_keys=True).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise CacheSerializationError(f"Failed to serialize cache value: {e}") from e

        if self.enable_compression and len(data) > self.compression_threshold:
            return gzip.compress(data, compresslevel=self.compression_level)
        return data

    def loads(self, data: bytes) -> Any:
        try:
            if data[:2] == GZIP_MAGIC:
                data = gzip.decompress(data)
            return json.loads(data.decode("utf-8"))
        except (OSError, EOFError, UnicodeDecodeError, ValueError) as e:
            raise CacheSerializationError(f"Failed to deserialize cache value: {e}") from e

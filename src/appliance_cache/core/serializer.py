# Copyright (c) Kirky.X. 2025. All rights reserved.
import gzip
import json
import zlib
from typing import Any, Union

from ..utils.exceptions import SerializationError

# JSON text never starts with "G", so the marker check is unambiguous
COMPRESSION_MARKER = b"GZIP:"


class Serializer:
    """JSON codec that gzips payloads above a size threshold.

    Args:
        enable_compression (bool): Whether large payloads are compressed.
        compression_threshold (int): Encoded size in bytes above which the
            payload is compressed.
        compression_level (int): gzip level, 0-9.
    """

    def __init__(
        self,
        enable_compression: bool = True,
        compression_threshold: int = 1024,
        compression_level: int = 6
    ):
        self.enable_compression = enable_compression
        self.compression_threshold = compression_threshold
        self.compression_level = compression_level

    @classmethod
    def from_settings(cls, settings) -> "Serializer":
        return cls(
            enable_compression=settings.enable_compression,
            compression_threshold=settings.compression_threshold,
            compression_level=settings.compression_level,
        )

    def serialize(self, value: Any) -> bytes:
        try:
            encoded = json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Value is not JSON serializable: {e}") from e

        if self.enable_compression and len(encoded) > self.compression_threshold:
            return COMPRESSION_MARKER + gzip.compress(encoded, compresslevel=self.compression_level)
        return encoded

    def deserialize(self, payload: Union[bytes, str]) -> Any:
        """Decode a stored payload, transparently decompressing it.

        Raises:
            SerializationError: When the payload is truncated, not valid gzip
                or not valid JSON.
        """
        data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
        try:
            if data.startswith(COMPRESSION_MARKER):
                data = gzip.decompress(data[len(COMPRESSION_MARKER):])
            return json.loads(data.decode("utf-8"))
        except (OSError, EOFError, zlib.error, UnicodeDecodeError, ValueError) as e:
            raise SerializationError(f"Stored payload could not be decoded: {e}") from e

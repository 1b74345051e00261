"""Multi-point integrity scan for compiled JAR buffers.

`verify()` is a diagnostic, not a gate: every check runs regardless of
earlier failures and appends a human-readable indicator when it fails.
The report is valid iff no indicator was appended.

Checks, in order:
  1. The buffer is bytes-like and non-empty.
  2. ZIP/JAR magic: the first two bytes are ``PK`` (0x50 0x4B). The bytes
     actually found are recorded as four hex digits even on mismatch.
  3. Size: when an expected size is known, the buffer length matches it.
  4. No leading null byte (JARs never start with 0x00; a zero-filled
     prefix means the blob was truncated or pre-allocated and not written).
  5. No text-corruption markers (``undefined``, ``null``, ``[object``) in
     the Latin-1 decoding of the first 100 bytes. These appear when a
     binary is round-tripped through a JSON/text layer upstream.
  6. SHA-256 of the full buffer, always reported.

The function is pure and deterministic for identical input.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Optional

ZIP_MAGIC = b"PK"
TEXT_SCAN_WINDOW = 100
TEXT_CORRUPTION_MARKERS = ("undefined", "null", "[object")


@dataclass(frozen=True)
class IntegrityReport:
    size_match: bool
    has_valid_signature: bool
    checksum: str
    corruption_indicators: list[str] = field(default_factory=list)
    signature_bytes: str = ""
    buffer_size: int = 0
    expected_size: Optional[int] = None
    file_name: str = ""

    @property
    def is_valid(self) -> bool:
        return not self.corruption_indicators

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "sizeMatch": self.size_match,
            "hasValidSignature": self.has_valid_signature,
            "checksum": self.checksum,
            "corruptionIndicators": list(self.corruption_indicators),
            "signatureBytes": self.signature_bytes,
            "bufferSize": self.buffer_size,
            "expectedSize": self.expected_size,
            "fileName": self.file_name,
        }


def verify(
    binary: Any,
    expected_size: Optional[int] = None,
    file_name: str = "",
) -> IntegrityReport:
    indicators: list[str] = []

    if isinstance(binary, (bytes, bytearray, memoryview)):
        data = bytes(binary)
    else:
        indicators.append("Buffer type is invalid")
        data = b""

    if not data:
        indicators.append("Buffer is empty")

    signature_bytes = data[:2].hex() if len(data) >= 2 else ""
    has_valid_signature = data[:2] == ZIP_MAGIC
    if not has_valid_signature:
        indicators.append(
            f"Invalid ZIP signature: {signature_bytes} (expected: {ZIP_MAGIC.hex()})"
        )

    size_match = expected_size is None or len(data) == expected_size
    if not size_match:
        indicators.append(f"Size mismatch: buffer={len(data)}, stored={expected_size}")

    if data[:1] == b"\x00":
        indicators.append("Buffer starts with null byte")

    head = data[:TEXT_SCAN_WINDOW].decode("latin-1")
    if any(marker in head for marker in TEXT_CORRUPTION_MARKERS):
        indicators.append("Text corruption detected in binary data")

    return IntegrityReport(
        size_match=size_match,
        has_valid_signature=has_valid_signature,
        checksum=hashlib.sha256(data).hexdigest(),
        corruption_indicators=indicators,
        signature_bytes=signature_bytes,
        buffer_size=len(data),
        expected_size=expected_size,
        file_name=file_name,
    )

"""
Content fingerprinting.

FNV-1a (32 bit) over the UTF-8 bytes of the schema content. The value is
stored as a decimal string in the content-hash label, so it has to be stable
across processes and Python versions; the builtin hash() is not.
"""

FNV32_OFFSET_BASIS = 0x811C9DC5
FNV32_PRIME = 0x01000193


def fnv1a_32(data: bytes) -> int:
    """Return the 32 bit FNV-1a hash of data."""
    h = FNV32_OFFSET_BASIS
    for byte in data:
        h ^= byte
        h = (h * FNV32_PRIME) & 0xFFFFFFFF
    return h


def content_hash(content: str) -> str:
    """Fingerprint of a schema payload, as it is written to the content-hash label."""
    return str(fnv1a_32(content.encode("utf-8")))

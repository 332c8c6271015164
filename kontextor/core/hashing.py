"""
Content fingerprints for duplicate suggestions.

The hash is cheap and non-cryptographic: two independently seeded 32-bit
FNV-style accumulators, concatenated into 16 hex characters. It only feeds
the duplicate-suggestion lookup, so a collision is a false suggestion and
never affects what a block resolves to.
"""

# Returned for empty content; never stored, never matched
NO_HASH = ""

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193
_MASK_32 = 0xFFFFFFFF


def content_hash(content: str) -> str:
    """
    Compute the fingerprint of a block's content.

    Args:
        content: The text to hash

    Returns:
        A 16-character lowercase hex string, or NO_HASH for empty content
    """
    if not content:
        return NO_HASH

    h1 = _FNV_OFFSET
    h2 = _FNV_PRIME
    for char in content:
        code = ord(char)
        h1 = ((h1 ^ code) * _FNV_PRIME) & _MASK_32
        h2 = ((h2 ^ code) * _FNV_OFFSET) & _MASK_32

    return f"{h1:08x}{h2:08x}"

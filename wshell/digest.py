"""Cryptographic digests used by the checksum builtins."""

import asyncio
import hashlib

ALGORITHMS = {
    'sha1': 'sha1',
    'sha256': 'sha256',
    'sha384': 'sha384',
    'sha512': 'sha512',
}


async def digest(algorithm: str, data: bytes) -> str:
    """Hex digest of data; algorithm names like 'SHA-256' or 'sha256'."""
    name = ALGORITHMS.get(algorithm.lower().replace('-', ''))
    if name is None:
        raise ValueError(f"Unsupported digest algorithm: {algorithm}")
    return await asyncio.to_thread(lambda: hashlib.new(name, data).hexdigest())

"""BLAKE3 digests used for collision-resistant object names."""
from pathlib import Path
import asyncio

from blake3 import blake3


async def blake3_file(path: Path) -> str:
    """Calculate BLAKE3 hash of file asynchronously (non-blocking)."""
    def _hash_file():
        hasher = blake3()
        with open(path, 'rb') as f:
            while True:
                chunk = f.read(65536)  # 64KB chunks
                if not chunk:
                    break
                hasher.update(chunk)
        return hasher.hexdigest()

    # Run in thread pool to avoid blocking the event loop
    return await asyncio.to_thread(_hash_file)

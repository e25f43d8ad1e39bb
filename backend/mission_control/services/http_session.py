"""
Shared aiohttp session handling for the vendor adapters.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import aiohttp


@asynccontextmanager
async def open_session(session: Optional[aiohttp.ClientSession] = None) -> AsyncIterator[aiohttp.ClientSession]:
    """Yield ``session`` when one was injected, otherwise a short-lived one."""
    if session is not None:
        yield session
        return
    async with aiohttp.ClientSession() as new_session:
        yield new_session

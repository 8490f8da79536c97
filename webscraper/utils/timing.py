"""
Cancellable waiting helpers shared by the suspension points of the scraper.
"""

import asyncio
from typing import Optional


async def sleep_unless_cancelled(delay: float, cancel_event: Optional[asyncio.Event] = None) -> bool:
    """
    Sleep for `delay` seconds, waking early if `cancel_event` is set.

    Returns:
        True if the wait was cut short by the cancel event, False if the
        full delay elapsed.
    """
    if cancel_event is None:
        if delay > 0:
            await asyncio.sleep(delay)
        return False

    if cancel_event.is_set():
        return True

    if delay <= 0:
        return False

    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True

"""Long-poll loop feeding Telegram updates to the command router."""

import asyncio
import logging

from telegram import Update

from rwtelegram.errors import TransportError

from .router import CommandRouter
from .transport import ChatTransport

logger = logging.getLogger('rwtelegram')

DEFAULT_POLL_TIMEOUT = 50
DEFAULT_BACKOFF = 2.0


class PollLoop:
    """Single consumer of getUpdates.

    The offset only moves forward, and it moves before the batch is
    dispatched, so an update whose handler fails is never redelivered.
    """

    def __init__(
        self,
        transport: ChatTransport,
        router: CommandRouter,
        poll_timeout: int = DEFAULT_POLL_TIMEOUT,
        backoff: float = DEFAULT_BACKOFF,
    ) -> None:
        self.transport = transport
        self.router = router
        self.poll_timeout = poll_timeout
        self.backoff = backoff
        self.offset = 0

    async def run(self, shutdown: asyncio.Event) -> None:
        """Poll until the shutdown event is set. The in-flight long poll is not cancelled."""
        logger.info('[POLL] Started')
        while not shutdown.is_set():
            await self.poll_once()
        logger.info('[POLL] Stopped')

    async def poll_once(self) -> int:
        """Fetch and dispatch one batch. Returns how many updates were handled."""
        try:
            updates = await self.transport.get_updates(self.offset, timeout=self.poll_timeout)
        except TransportError as e:
            logger.error(f'[POLL] {e}; retrying in {self.backoff}s')
            await asyncio.sleep(self.backoff)
            return 0

        if not updates:
            return 0

        updates.sort(key=lambda u: u.update_id)
        self.offset = max(self.offset, updates[-1].update_id + 1)

        for update in updates:
            await self.dispatch(update)
        return len(updates)

    async def dispatch(self, update: Update) -> None:
        """Hand one update to the router, logging and swallowing handler errors."""
        try:
            if update.callback_query is not None:
                await self.router.handle_callback(update.callback_query)
            elif update.message is not None:
                await self.router.handle_message(update.message)
            else:
                logger.debug(f'[POLL] Ignoring update {update.update_id}')
        except Exception:
            logger.exception(f'[POLL] Error handling update {update.update_id}')

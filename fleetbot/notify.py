from __future__ import annotations

from typing import Protocol

import httpx

from .logger import get_logger

logger = get_logger(__name__)

API_BASE = "https://api.telegram.org"


class Channel(Protocol):
    async def send(self, chat_id: int | str, text: str) -> bool: ...


class TelegramChannel:
    """Sends plain messages through one bot's Bot API token.

    Failures are logged and reported as ``False``: a lost notification
    never undoes the assignment or return it describes.
    """

    def __init__(self, bot_token: str | None, timeout: float = 10):
        self.bot_token = bot_token
        self.timeout = timeout

    async def send(self, chat_id: int | str, text: str) -> bool:
        if not self.bot_token or not chat_id:
            logger.warning(f"Notification to {chat_id} skipped: channel not configured")
            return False
        url = f"{API_BASE}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(f"Failed to send notification to {chat_id}: {exc}")
            return False
        logger.info(f"Notification sent to {chat_id}")
        return True


class Notifier:
    """Both directions of the counterpart notifications.

    ``users`` delivers through the employees' bot, ``admins`` through the
    admin bot to ``admin_chat_id``.
    """

    def __init__(self, users: Channel, admins: Channel, admin_chat_id: int | str | None):
        self.users = users
        self.admins = admins
        self.admin_chat_id = admin_chat_id

    async def to_user(self, telegram_id: int | None, text: str) -> bool | None:
        # None — прокси-сотрудник без Telegram, уведомлять некого
        if telegram_id is None:
            return None
        return await self.users.send(telegram_id, text)

    async def to_admin(self, text: str) -> bool | None:
        if not self.admin_chat_id:
            return None
        return await self.admins.send(self.admin_chat_id, text)

"""aiogram implementation of the ReplyChannel the jobs talk to."""

from __future__ import annotations

import logging
from typing import Optional

from aiogram import Bot
from aiogram.enums import ChatAction
from aiogram.types import BufferedInputFile

logger = logging.getLogger(__name__)


class AiogramReplyChannel:
    """Replies into one chat through a Bot instance."""

    def __init__(self, bot: Bot, chat_id: int):
        self.bot = bot
        self.chat_id = chat_id

    async def send_text(self, text: str) -> Optional[int]:
        message = await self.bot.send_message(self.chat_id, text)
        return message.message_id

    async def send_document(self, data: bytes, filename: str, caption: Optional[str] = None) -> None:
        await self.bot.send_document(
            self.chat_id,
            BufferedInputFile(data, filename=filename),
            caption=caption,
        )

    async def delete_message(self, message_id: int) -> None:
        await self.bot.delete_message(self.chat_id, message_id)

    async def send_upload_action(self) -> None:
        await self.bot.send_chat_action(self.chat_id, ChatAction.UPLOAD_DOCUMENT)

    async def download(self, file_id: str) -> bytes:
        buffer = await self.bot.download(file_id)
        if buffer is None:
            raise FileNotFoundError(f"telegram file {file_id} could not be downloaded")
        return buffer.read()

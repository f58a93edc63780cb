from __future__ import annotations

import logging

from aiogram import F, Router
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import Message

from nocrop.settings import human_settings
from nocrop.utils.errors import PersistenceError, ValidationError
from nocrop_bot.app import ServiceContainer
from nocrop_bot.transport import AiogramReplyChannel

logger = logging.getLogger(__name__)

router = Router()

START_TEXT = (
    "Hi! I'm the “No-Crop Image” bot.\n"
    "Send me an image (photo or document). I’ll add borders to match your ratio without scaling.\n\n"
    "Commands:\n"
    "/ratio 4:5\n"
    "/color #000000\n"
    "/settings\n"
    "/help\n\n"
    "Current:\n"
)

HELP_TEXT = (
    "Usage:\n"
    "• Send an image: I'll return a no-crop version as a file.\n"
    "• /ratio <w:h> or original\n"
    "• /color <#RRGGBB|black|white>\n"
    "• /settings\n\n"
    "Notes:\n"
    "• No scaling.\n"
    "• Albums are processed together, one file per image.\n"
    "• Send as document to keep the original quality."
)

RATIO_USAGE = "Usage: /ratio 4:5 or 16:9 or original"
COLOR_USAGE = "Usage: /color #000000 or black/white"


def _reply_channel(message: Message) -> AiogramReplyChannel:
    return AiogramReplyChannel(message.bot, message.chat.id)


@router.message(CommandStart())
async def cmd_start(message: Message, container: ServiceContainer) -> None:
    settings = await container.settings.get(message.from_user.id)
    await message.answer(START_TEXT + human_settings(settings))


@router.message(Command("help"))
async def cmd_help(message: Message) -> None:
    await message.answer(HELP_TEXT)


@router.message(Command("settings"))
async def cmd_settings(message: Message, container: ServiceContainer) -> None:
    settings = await container.settings.get(message.from_user.id)
    await message.answer(f"Current settings:\n{human_settings(settings)}")


@router.message(Command("ratio"))
async def cmd_ratio(message: Message, command: CommandObject, container: ServiceContainer) -> None:
    try:
        settings = await container.settings.set_ratio(message.from_user.id, (command.args or "").strip())
    except ValidationError:
        await message.answer(RATIO_USAGE)
        return
    except PersistenceError as exc:
        await message.answer(exc.user_message)
        return
    await message.answer(f"OK, ratio set to {settings.ratio}")


@router.message(Command("color"))
async def cmd_color(message: Message, command: CommandObject, container: ServiceContainer) -> None:
    try:
        settings = await container.settings.set_color(message.from_user.id, (command.args or "").strip())
    except ValidationError:
        await message.answer(COLOR_USAGE)
        return
    except PersistenceError as exc:
        await message.answer(exc.user_message)
        return
    await message.answer(f"OK, border color set to {settings.color}")


@router.message(F.photo)
async def on_photo(message: Message, container: ServiceContainer) -> None:
    if not message.photo:
        return
    largest = message.photo[-1]
    user_id = message.from_user.id
    reply = _reply_channel(message)

    if message.media_group_id:
        container.add_album_item(user_id, message.media_group_id, largest.file_id, reply)
        return

    container.submit_photo(user_id, reply, largest.file_id)


@router.message(F.document)
async def on_document(message: Message, container: ServiceContainer) -> None:
    document = message.document
    if not document.mime_type or not document.mime_type.startswith("image/"):
        return
    container.submit_document(
        message.from_user.id,
        _reply_channel(message),
        document.file_id,
        document.file_name,
        document.mime_type,
    )

import logging

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, InputFile

logger = logging.getLogger(__name__)


class MessagingGateway:
    """Outbound side of the chat platform."""

    async def send_text(self, chat_id, text, buttons=None, reply_to=None):
        """Send ``text``; ``buttons`` is a list of rows of ``(label, callback_data)``.

        Returns the id of the sent message.
        """
        raise NotImplementedError

    async def send_voice(self, chat_id, file_ref, caption=None):
        raise NotImplementedError

    async def send_video_note(self, chat_id, file_ref):
        raise NotImplementedError

    async def send_document(self, chat_id, data, filename, caption=None):
        raise NotImplementedError

    async def download_attachment(self, file_ref):
        raise NotImplementedError


def build_keyboard(buttons):
    if not buttons:
        return None
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(label, callback_data=data) for label, data in row]
        for row in buttons
    ])


class TelegramGateway(MessagingGateway):
    def __init__(self, bot):
        self.bot = bot

    @classmethod
    def from_settings(cls, settings):
        return cls(Bot(token=settings.telegram_token))

    async def send_text(self, chat_id, text, buttons=None, reply_to=None):
        message = await self.bot.send_message(
            chat_id=chat_id,
            text=text,
            reply_markup=build_keyboard(buttons),
            reply_to_message_id=reply_to,
        )
        logger.debug("Message %s sent to %s", message.message_id, chat_id)
        return message.message_id

    async def send_voice(self, chat_id, file_ref, caption=None):
        message = await self.bot.send_voice(chat_id=chat_id, voice=file_ref, caption=caption)
        return message.message_id

    async def send_video_note(self, chat_id, file_ref):
        message = await self.bot.send_video_note(chat_id=chat_id, video_note=file_ref)
        return message.message_id

    async def send_document(self, chat_id, data, filename, caption=None):
        message = await self.bot.send_document(
            chat_id=chat_id,
            document=InputFile(data, filename=filename),
            caption=caption,
        )
        return message.message_id

    async def download_attachment(self, file_ref):
        tg_file = await self.bot.get_file(file_ref)
        return bytes(await tg_file.download_as_bytearray())

import sys
import asyncio
from telegram import Bot

from course_bot.config import Settings

settings = Settings.from_env()

async def register():
    bot = Bot(token=settings.telegram_token)

    if not settings.webhook_url:
        print("❌ ERROR: WEBHOOK_URL is not set!")
        print("   Point it at the deployed API, e.g. https://bot.example.com/telegram/webhook")
        sys.exit(1)

    print(f"Registering webhook: {settings.webhook_url}")
    print("Allowed updates: messages and inline button taps\n")

    result = await bot.set_webhook(
        url=settings.webhook_url,
        allowed_updates=["message", "callback_query"],
        secret_token=settings.webhook_secret,
    )

    if result:
        print("✅ Webhook registered successfully!")
        print(f"   URL: {settings.webhook_url}")
        if settings.webhook_secret:
            print("   Telegram will send X-Telegram-Bot-Api-Secret-Token with every update.")
    else:
        print("❌ Webhook registration failed. Check WEBHOOK_URL.")

    info = await bot.get_webhook_info()
    print(f"\nWebhook info:")
    print(f"  URL: {info.url}")
    print(f"  Pending updates: {info.pending_update_count}")
    print(f"  Allowed updates: {info.allowed_updates}")
    if info.last_error_message:
        print(f"  Last error: {info.last_error_message}")

if __name__ == "__main__":
    asyncio.run(register())

import os
import logging
import uvicorn

from course_bot.api import create_app
from course_bot.app import Container
from course_bot.config import Settings

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").strip().upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

settings = Settings.from_env()
app = create_app(Container.from_settings(settings))

if __name__ == "__main__":
    port = int(os.environ.get("PORT", "8000"))
    print(f"Starting course bot API on port {port}...")
    uvicorn.run(app, host="0.0.0.0", port=port)

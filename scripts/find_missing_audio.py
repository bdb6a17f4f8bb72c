"""List AUDIO/VIDEO submissions that were prompted but never received a file.

    python scripts/find_missing_audio.py            # report only
    python scripts/find_missing_audio.py --resend   # send the instruction again
"""
import sys
import asyncio

from course_bot.app import Container
from course_bot.config import Settings

async def find_missing(resend=False):
    settings = Settings.from_env()
    container = Container.from_settings(settings)
    store = container.store

    waiting = store.list_awaiting_files()
    if not waiting:
        print("✅ No audio submissions are waiting for a file.")
        return

    print(f"Found {len(waiting)} submission(s) without a file:\n")
    for submission in waiting:
        context = store.load_context(submission)
        print(f"  • {context.learner_name} | Module {context.module_label} | Step {context.step_label}")
        print(f"    submission={submission.id} prompt={submission.prompt_message_id} created={submission.created_at}")

    if not resend:
        print("\nRun with --resend to send the instructions again.")
        return

    print("\nResending instructions...")
    await container.startup()
    try:
        for submission in waiting:
            try:
                updated = await container.audio.start_audio_submission(
                    submission.user_id, submission.step_id, submission.module_id
                )
                print(f"  ✅ {submission.id[:8]}... new prompt {updated.prompt_message_id}")
            except Exception as e:
                print(f"  ❌ {submission.id[:8]}... {e}")
    finally:
        await container.shutdown()

if __name__ == "__main__":
    asyncio.run(find_missing(resend="--resend" in sys.argv[1:]))

import asyncio
from collections import Counter
from datetime import date

from course_bot.app import Container
from course_bot.config import Settings
from course_bot.models import SubmissionStatus

COLUMNS = ["submission_id", "learner", "module", "step", "status", "ai_score", "created_at"]


def pending_table(store, pending):
    lines = ["\t".join(COLUMNS)]
    for submission in pending:
        context = store.load_context(submission)
        lines.append("\t".join(str(value) for value in [
            submission.id,
            context.learner_name,
            context.module_label,
            context.step_label,
            submission.status.value,
            "" if submission.ai_score is None else submission.ai_score,
            submission.created_at or "",
        ]))
    return ("\n".join(lines) + "\n").encode("utf-8")


async def digest():
    settings = Settings.from_env()
    container = Container.from_settings(settings)
    store = container.store

    sent = store.list_submissions(status=SubmissionStatus.SENT)
    reviewed = store.list_submissions(status=SubmissionStatus.AI_REVIEWED)
    pending = reviewed + sent

    if not pending:
        print("Nothing awaiting review.")
        return

    per_module = Counter()
    for submission in pending:
        module = store.get_module(submission.module_id)
        per_module[f"{module.index}: {module.title}" if module else "?"] += 1

    msg = f"📋 SUBMISSIONS AWAITING REVIEW\n\n"
    msg += f"Total: {len(pending)} | AI pre-scored: {len(reviewed)} | Not scored: {len(sent)}\n\n"
    msg += "By module:\n"
    for label, count in per_module.most_common():
        msg += f"  • Module {label}: {count}\n"

    oldest = min(pending, key=lambda s: s.created_at or "")
    msg += f"\n⏳ Oldest waiting since: {oldest.created_at}"

    await container.startup()
    try:
        sent_to = await container.notifications.broadcast_to_staff(msg)
        await container.notifications.send_document_to_staff(
            pending_table(store, pending),
            f"pending_{date.today().isoformat()}.tsv",
            caption="Full list of submissions awaiting review",
        )
    finally:
        await container.shutdown()
    print(f"Digest sent to {len(sent_to)} curator(s).")

if __name__ == "__main__":
    asyncio.run(digest())

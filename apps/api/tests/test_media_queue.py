from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import update

from conftest import create_funded_task
from models.media_task import MediaTask
from services.media_queue import (
    MEDIA_QUEUE_NAME,
    build_task_message,
    enqueue_media_task,
    recover_stalled_media_tasks,
)
from services.media_tasks import update_task
from services.media_worker import MediaTaskRetryRequested, WorkerOutcome, process_media_task


def test_enqueue_uses_task_scoped_job_id_and_bounded_retry():
    queue = MagicMock()
    message = build_task_message("task-1", "https://youtu.be/abc", "subtitle", "user-1")

    with patch("services.media_queue.get_media_queue", return_value=queue):
        enqueue_media_task(message)

    args, kwargs = queue.enqueue.call_args
    assert args == ("services.media_worker.process_media_task", message)
    assert kwargs["job_id"] == "media-task:task-1"
    assert kwargs["retry"].max == 5
    assert kwargs["retry"].intervals == [15, 30, 60, 120, 240]
    assert kwargs["job_timeout"] == 120
    assert MEDIA_QUEUE_NAME == "media_tasks"


@pytest.mark.asyncio
async def test_recover_requeues_only_stale_unfinished_tasks(session_maker):
    stale = await create_funded_task(session_maker, "https://youtu.be/stale")
    fresh = await create_funded_task(session_maker, "https://youtu.be/fresh")
    done = await create_funded_task(session_maker, "https://youtu.be/done")
    async with session_maker() as db:
        await update_task(db, stale.id, status="processing")
        await update_task(db, done.id, status="extracted", progress=100)
        old = datetime.now(timezone.utc) - timedelta(hours=2)
        await db.execute(update(MediaTask).where(MediaTask.id.in_([stale.id, done.id])).values(updated_at=old))
        await db.commit()

    with (
        patch("services.media_queue.async_session_maker", session_maker),
        patch("services.media_queue.enqueue_media_task") as enqueue,
    ):
        recovered = await recover_stalled_media_tasks(max_age_minutes=15)

    assert recovered == 1
    enqueue.assert_called_once()
    assert enqueue.call_args.args[0]["taskId"] == stale.id
    assert fresh.id != stale.id


def test_rq_entrypoint_raises_to_trigger_redelivery():
    retry = WorkerOutcome.retry("still processing", 15)
    ack = WorkerOutcome.ack("done", status="extracted")

    def returning(outcome):
        async def fake_process_and_drain(payload):
            return outcome

        return fake_process_and_drain

    with patch("services.media_worker._process_and_drain", new=returning(retry)):
        with pytest.raises(MediaTaskRetryRequested):
            process_media_task({"taskId": "t", "url": "https://youtu.be/abc"})

    with patch("services.media_worker._process_and_drain", new=returning(ack)):
        result = process_media_task({"taskId": "t", "url": "https://youtu.be/abc"})
    assert result["action"] == "ack"
    assert result["status"] == "extracted"

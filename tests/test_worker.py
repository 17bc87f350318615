import json
import smtplib

import pytest

from cleardrip.notifications import EmailQueue
from cleardrip.worker import EmailWorker


def job(attempts_made=0, **data):
    payload = {"to": "asha@example.com", "subject": "Service Booking Confirmed", "message": "Paid"}
    payload.update(data)
    return json.dumps({
        "id": "payment-po-1-1",
        "name": "payment-confirmation-po-1",
        "data": payload,
        "attempts": 3,
        "backoff_ms": 1000,
        "attempts_made": attempts_made,
    })


@pytest.fixture
def redis_client(mocker):
    return mocker.Mock()


@pytest.fixture
def mailer(mocker):
    return mocker.Mock()


@pytest.fixture
def worker(redis_client, mailer):
    return EmailWorker(EmailQueue(redis_client, name="emailQueue"), mailer, poll_timeout=1)


def test_process_sends_email(worker, mailer, redis_client):
    assert worker.process(job()) is True

    mailer.send.assert_called_once_with("asha@example.com", "Service Booking Confirmed", "Paid", "Paid")
    redis_client.zadd.assert_not_called()


def test_failed_delivery_is_retried_with_exponential_backoff(worker, mailer, redis_client, mocker):
    mocker.patch("cleardrip.worker.time.time", return_value=1000.0)
    mailer.send.side_effect = smtplib.SMTPServerDisconnected("gone")

    assert worker.process(job(attempts_made=1)) is False

    key, mapping = redis_client.zadd.call_args.args
    assert key == "emailQueue:delayed"
    (raw, retry_at), = mapping.items()
    assert json.loads(raw)["attempts_made"] == 2
    assert retry_at == 1002.0


def test_job_fails_after_last_attempt(worker, mailer, redis_client):
    mailer.send.side_effect = ConnectionRefusedError("smtp down")

    worker.process(job(attempts_made=2))

    redis_client.zadd.assert_not_called()
    key, raw = redis_client.lpush.call_args.args
    assert key == "emailQueue:failed"
    failed = json.loads(raw)
    assert failed["attempts_made"] == 3
    assert "smtp down" in failed["failed_reason"]


def test_invalid_job_is_not_retried(worker, mailer, redis_client):
    assert worker.process(job(to=None)) is False

    mailer.send.assert_not_called()
    redis_client.zadd.assert_not_called()
    assert redis_client.lpush.call_args.args[0] == "emailQueue:failed"


def test_promote_due_jobs(worker, redis_client):
    redis_client.zrangebyscore.return_value = [b"job-a", b"job-b"]
    redis_client.zrem.side_effect = [1, 0]

    assert worker.promote_due_jobs(now=50) == 2

    redis_client.zrangebyscore.assert_called_once_with("emailQueue:delayed", 0, 50)
    redis_client.lpush.assert_called_once_with("emailQueue:waiting", b"job-a")


def test_unexpected_mailer_error_is_retried(worker, mailer, redis_client):
    mailer.send.side_effect = ValueError("Header values may not contain linefeed or carriage return characters")

    assert worker.process(job()) is False

    key, mapping = redis_client.zadd.call_args.args
    assert key == "emailQueue:delayed"
    (raw, _), = mapping.items()
    assert json.loads(raw)["attempts_made"] == 1


def test_undecodable_job_goes_to_failed_list(worker, mailer, redis_client):
    assert worker.process(b"{not json") is False
    assert worker.process(b"42") is False

    mailer.send.assert_not_called()
    assert [c.args for c in redis_client.lpush.call_args_list] == [
        ("emailQueue:failed", b"{not json"),
        ("emailQueue:failed", b"42"),
    ]


def test_run_once_moves_processes_and_acknowledges(worker, redis_client, mailer):
    raw = job().encode()
    redis_client.zrangebyscore.return_value = []
    redis_client.blmove.return_value = raw

    assert worker.run_once() is True

    redis_client.blmove.assert_called_once_with(
        "emailQueue:waiting", "emailQueue:processing", 1, src="RIGHT", dest="LEFT")
    mailer.send.assert_called_once()
    redis_client.lrem.assert_called_once_with("emailQueue:processing", 1, raw)


def test_run_once_reschedules_job_after_mailer_crash(worker, redis_client, mailer):
    raw = job().encode()
    redis_client.zrangebyscore.return_value = []
    redis_client.blmove.return_value = raw
    mailer.send.side_effect = RuntimeError("boom")

    assert worker.run_once() is False

    assert redis_client.zadd.call_args.args[0] == "emailQueue:delayed"
    redis_client.lrem.assert_called_once_with("emailQueue:processing", 1, raw)


def test_unacknowledged_job_stays_in_processing_list(worker, redis_client, mailer):
    raw = job().encode()
    redis_client.zrangebyscore.return_value = []
    redis_client.blmove.return_value = raw
    redis_client.zadd.side_effect = ConnectionError("redis went away")
    mailer.send.side_effect = smtplib.SMTPServerDisconnected("gone")

    with pytest.raises(ConnectionError):
        worker.run_once()

    redis_client.lrem.assert_not_called()


def test_requeue_stalled(worker, redis_client):
    redis_client.lmove.side_effect = [b"job-a", b"job-b", None]

    assert worker.requeue_stalled() == 2

    redis_client.lmove.assert_called_with("emailQueue:processing", "emailQueue:waiting", "RIGHT", "RIGHT")


def test_run_once_idle(worker, redis_client):
    redis_client.zrangebyscore.return_value = []
    redis_client.blmove.return_value = None

    assert worker.run_once() is None
    redis_client.lrem.assert_not_called()

import json
import smtplib
import time
from email.message import EmailMessage

import redis
import structlog

from cleardrip.config import get_settings
from cleardrip.logging_config import configure_logging
from cleardrip.notifications import EmailQueue

logger = structlog.get_logger(component="email_worker")


class InvalidJob(Exception):
    pass


class SmtpMailer:
    def __init__(self, host, port, username=None, password=None, sender=None, starttls=True, timeout=10):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.starttls = starttls
        self.timeout = timeout

    def send(self, to, subject, message, html=None):
        email = EmailMessage()
        email["From"] = self.sender
        email["To"] = to
        email["Subject"] = subject
        email.set_content(message)
        if html:
            email.add_alternative(html, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(email)


class EmailWorker:
    def __init__(self, queue: EmailQueue, mailer, poll_timeout: int = 5):
        self.queue = queue
        self.mailer = mailer
        self.poll_timeout = poll_timeout
        self._running = False

    @property
    def redis(self):
        return self.queue.redis

    def promote_due_jobs(self, now=None):
        """Move delayed jobs whose retry time has passed back onto the waiting list."""
        now = now if now is not None else time.time()
        due = self.redis.zrangebyscore(self.queue.delayed_key, 0, now)
        for raw in due:
            # Only the worker that removes the entry re-queues it
            if self.redis.zrem(self.queue.delayed_key, raw):
                self.redis.lpush(self.queue.waiting_key, raw)
        return len(due)

    def requeue_stalled(self):
        """Put jobs left in the processing list by a stopped worker back on the waiting list, next in line."""
        moved = 0
        while self.redis.lmove(self.queue.processing_key, self.queue.waiting_key, "RIGHT", "RIGHT"):
            moved += 1
        if moved:
            logger.warning("email_jobs_requeued", count=moved)
        return moved

    def process(self, raw):
        try:
            job = json.loads(raw)
        except ValueError:
            job = None
        if not isinstance(job, dict):
            self.redis.lpush(self.queue.failed_key, raw)
            logger.error("email_job_undecodable", queue=self.queue.name)
            return False

        job["attempts_made"] = job.get("attempts_made", 0) + 1
        logger.info("processing_email_job", job_id=job.get("id"), attempt=job["attempts_made"])

        try:
            data = job.get("data") or {}
            if not data.get("to") or not data.get("subject") or not data.get("message"):
                raise InvalidJob("Invalid job data: to, subject, and message are required")
            self.mailer.send(data["to"], data["subject"], data["message"], data.get("html") or data["message"])
        except InvalidJob as e:
            self._fail(job, str(e))
            return False
        except Exception as e:
            self._retry_or_fail(job, f"{type(e).__name__}: {e}")
            return False

        logger.info("email_job_completed", job_id=job.get("id"), to=data["to"])
        return True

    def run_once(self):
        self.promote_due_jobs()
        raw = self.redis.blmove(self.queue.waiting_key, self.queue.processing_key, self.poll_timeout,
                                src="RIGHT", dest="LEFT")
        if raw is None:
            return None
        result = self.process(raw)
        # Acknowledge only once the job is sent, rescheduled or failed
        self.redis.lrem(self.queue.processing_key, 1, raw)
        return result

    def run(self):
        self._running = True
        self.requeue_stalled()
        logger.info("email_worker_started", queue=self.queue.name)
        while self._running:
            self.run_once()
        logger.info("email_worker_stopped", queue=self.queue.name)

    def stop(self):
        self._running = False

    def _retry_or_fail(self, job, error):
        attempts = job.get("attempts", 1)
        if job["attempts_made"] >= attempts:
            self._fail(job, error)
            return

        delay_ms = job.get("backoff_ms", self.queue.backoff_ms) * 2 ** (job["attempts_made"] - 1)
        retry_at = time.time() + delay_ms / 1000
        self.redis.zadd(self.queue.delayed_key, {json.dumps(job): retry_at})
        logger.warning("email_job_retry_scheduled", job_id=job.get("id"), attempt=job["attempts_made"],
                       delay_ms=delay_ms, error=error)

    def _fail(self, job, error):
        job["failed_reason"] = error
        self.redis.lpush(self.queue.failed_key, json.dumps(job))
        logger.error("email_job_failed", job_id=job.get("id"), attempts_made=job["attempts_made"], error=error)


def main():
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    redis_client = redis.Redis.from_url(settings.REDIS_URL)
    queue = EmailQueue(
        redis_client,
        name=settings.EMAIL_QUEUE_NAME,
        attempts=settings.EMAIL_JOB_ATTEMPTS,
        backoff_ms=settings.EMAIL_JOB_BACKOFF_MS,
    )
    mailer = SmtpMailer(
        settings.SMTP_HOST,
        settings.SMTP_PORT,
        username=settings.SMTP_USER,
        password=settings.SMTP_PASSWORD,
        sender=settings.MAIL_FROM,
        starttls=settings.SMTP_STARTTLS,
    )
    worker = EmailWorker(queue, mailer)

    try:
        worker.run()
    except KeyboardInterrupt:
        worker.stop()
    finally:
        redis_client.close()


if __name__ == "__main__":
    main()

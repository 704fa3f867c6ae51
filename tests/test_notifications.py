"""
Tests for billing notices: queueing after commit and the worker-side email task.
"""
import logging
import smtplib

import pytest
import redis

from app.core.settings import settings
from app.services.email import queue as queue_module
from app.services.email import service as email_service
from app.services.email import tasks
from app.services.email.queue import NOTICE_TASK, Notice, NoticeKind, RQNotifier


class FakeQueue:
    jobs: list = []

    def __init__(self, name, connection=None):
        self.name = name
        self.connection = connection

    def enqueue(self, func, *args):
        FakeQueue.jobs.append((self.name, func, args))


class UnreachableQueue(FakeQueue):
    def enqueue(self, func, *args):
        raise redis.exceptions.TimeoutError("Timeout connecting to server")


class FakeSMTP:
    instances: list = []
    fail_times = 0

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.sent = []
        self.tls = False
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def close(self):
        pass

    def starttls(self, context=None):
        self.tls = True

    def login(self, username, password):
        pass

    def send_message(self, msg):
        if FakeSMTP.fail_times:
            FakeSMTP.fail_times -= 1
            raise smtplib.SMTPServerDisconnected("connection unexpectedly closed")
        self.sent.append(msg)


@pytest.fixture
def fake_queue(monkeypatch):
    FakeQueue.jobs = []
    monkeypatch.setattr(queue_module, "Queue", FakeQueue)
    return FakeQueue


@pytest.fixture
def smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_times = 0
    monkeypatch.setattr(settings, "smtp_host", "smtp.test")
    monkeypatch.setattr(settings, "email_from", "billing@chatvault.test")
    monkeypatch.setattr(settings, "email_from_name", "ChatVault")
    monkeypatch.setattr(settings, "smtp_use_ssl", False)
    monkeypatch.setattr(email_service.smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(email_service.time, "sleep", lambda seconds: None)
    return FakeSMTP


class TestRQNotifier:
    def test_enqueues_worker_task(self, fake_queue):
        RQNotifier(queue_name="billing-test").enqueue(Notice(NoticeKind.PAYMENT_FAILED, "u1@example.com"))

        assert fake_queue.jobs == [("billing-test", NOTICE_TASK, ("payment_failed", "u1@example.com"))]

    def test_connection_has_timeouts(self):
        notifier = RQNotifier(redis_url="redis://localhost:6379/15")
        kwargs = notifier.redis.connection_pool.connection_kwargs

        assert kwargs["socket_connect_timeout"] == settings.redis_socket_timeout_seconds
        assert kwargs["socket_timeout"] == settings.redis_socket_timeout_seconds

    def test_reuses_one_connection(self, fake_queue):
        notifier = RQNotifier()
        notifier.enqueue(Notice(NoticeKind.PAYMENT_FAILED, "a@example.com"))
        notifier.enqueue(Notice(NoticeKind.PAYMENT_FAILED, "b@example.com"))

        assert len(fake_queue.jobs) == 2
        assert notifier.queue.connection is notifier.redis

    def test_redis_outage_is_logged_not_raised(self, monkeypatch, caplog):
        monkeypatch.setattr(queue_module, "Queue", UnreachableQueue)
        with caplog.at_level(logging.ERROR, logger="app.services.email.queue"):
            RQNotifier().enqueue(Notice(NoticeKind.SUBSCRIPTION_CANCELED, "u1@example.com"))

        assert "Failed to enqueue subscription_canceled notice" in caplog.text


class TestSendBillingNotice:
    def test_sends_payment_failed_email(self, monkeypatch):
        sent = []
        monkeypatch.setattr(tasks, "send_email", lambda **kw: sent.append(kw))

        tasks.send_billing_notice("payment_failed", "u1@example.com")

        assert len(sent) == 1
        assert sent[0]["to_email"] == "u1@example.com"
        assert "payment failed" in sent[0]["subject"]
        assert "/billing" in sent[0]["body"]

    def test_cancellation_mentions_free_plan(self, monkeypatch):
        sent = []
        monkeypatch.setattr(tasks, "send_email", lambda **kw: sent.append(kw))

        tasks.send_billing_notice("subscription_canceled", "u1@example.com")

        assert "free plan" in sent[0]["body"]

    def test_unknown_kind_is_dropped(self, monkeypatch, caplog):
        sent = []
        monkeypatch.setattr(tasks, "send_email", lambda **kw: sent.append(kw))

        with caplog.at_level(logging.ERROR, logger="app.services.email.tasks"):
            tasks.send_billing_notice("trial_ending", "u1@example.com")

        assert sent == []
        assert "trial_ending" in caplog.text


class TestSendEmail:
    def test_dev_mode_skips_smtp(self, monkeypatch, caplog):
        monkeypatch.setattr(settings, "smtp_host", None)
        monkeypatch.setattr(email_service.smtplib, "SMTP", lambda *a, **kw: pytest.fail("SMTP used in dev mode"))

        with caplog.at_level(logging.INFO, logger="app.services.email.service"):
            email_service.send_email("u1@example.com", "Subject", "Body")

        assert "SMTP not configured" in caplog.text

    def test_sends_over_starttls(self, smtp):
        email_service.send_email("u1@example.com", "Hello", "Body")

        server = smtp.instances[0]
        assert server.host == "smtp.test"
        assert server.tls
        msg = server.sent[0]
        assert msg["To"] == "u1@example.com"
        assert msg["From"] == "ChatVault <billing@chatvault.test>"

    def test_retries_then_succeeds(self, smtp, monkeypatch):
        monkeypatch.setattr(settings, "email_send_retries", 3)
        smtp.fail_times = 2

        email_service.send_email("u1@example.com", "Hello", "Body")

        assert len(smtp.instances) == 3
        assert len(smtp.instances[-1].sent) == 1

    def test_raises_after_last_attempt(self, smtp, monkeypatch):
        monkeypatch.setattr(settings, "email_send_retries", 2)
        smtp.fail_times = 5

        with pytest.raises(smtplib.SMTPServerDisconnected):
            email_service.send_email("u1@example.com", "Hello", "Body")
        assert len(smtp.instances) == 2

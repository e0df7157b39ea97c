"""Test doubles shared by the suite: clock, delivery transport and content backend."""

from datetime import datetime, timedelta, timezone

from app.services.notifications.types import DeliveryResult

# Tuesday 2026-03-10 14:00 UTC
BASE_NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock; tests move time with advance() or by assigning .now."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeTransport:
    """Records sends. fail_users: user ids whose sends raise; result: DeliveryResult to return."""

    def __init__(self, result=None, fail_users=None, error=None):
        self.calls = []
        self.result = result
        self.fail_users = set(fail_users or ())
        self.error = error

    async def send(self, user_id, payload):
        self.calls.append((user_id, payload))
        if self.error is not None or user_id in self.fail_users:
            raise self.error or ConnectionError("push endpoint unreachable")
        return self.result if self.result is not None else DeliveryResult(delivered=1)


class FakeBackend:
    """ContentBackend returning canned responses in order; an Exception item is raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts = []

    async def complete(self, prompt):
        self.prompts.append(prompt)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item

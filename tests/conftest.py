"""Shared test fixtures: identities and an in-memory relay."""

from __future__ import annotations

import asyncio
from collections import deque

import pytest

from privdm.protocol.event import Event
from privdm.sdk.signer import LocalSigner
from privdm.sdk.transport.base import (
    CLOSED_BY_CALLER,
    PublishResult,
    RelayTransport,
    Subscription,
    SubscriptionHandlers,
)


def matches_filter(f: dict, event: Event) -> bool:
    """Relay-side filter matching for the fields this package uses."""
    if "kinds" in f and event.kind not in f["kinds"]:
        return False
    if "authors" in f and event.pubkey not in f["authors"]:
        return False
    if "since" in f and event.created_at < f["since"]:
        return False
    if "until" in f and event.created_at > f["until"]:
        return False
    for key, values in f.items():
        if key.startswith("#") and not set(event.tag_values(key[1:])) & set(values):
            return False
    return True


class FakeSubscription(Subscription):
    def __init__(self, relays: list[str], filter: dict, handlers: SubscriptionHandlers) -> None:
        self.relays = relays
        self.filter = filter
        self.handlers = handlers
        self.closed = False

    def close(self, reason: str = CLOSED_BY_CALLER) -> None:
        if self.closed:
            return
        self.closed = True
        if self.handlers.on_close:
            self.handlers.on_close([reason for _ in self.relays])

    def deliver(self, event: Event) -> None:
        if not self.closed:
            self.handlers.on_event(event)

    def eose(self) -> None:
        if not self.closed and self.handlers.on_eose:
            self.handlers.on_eose()

    def relay_close(self, reasons: list[str]) -> None:
        """Simulate the relays ending the subscription themselves."""
        if self.closed:
            return
        self.closed = True
        if self.handlers.on_close:
            self.handlers.on_close(reasons)


class FakeRelayTransport(RelayTransport):
    """In-memory relay network.

    Published events are stored and pushed to matching open subscriptions.
    New subscriptions get the stored matches (newest first, honouring
    ``limit``) followed by EOSE.  Entries in ``responses`` override that for
    the next subscriptions in order: a list of events is served as the page,
    a string closes the subscription with that reason on every relay.
    """

    def __init__(self) -> None:
        self.events: list[Event] = []
        self.responses: deque = deque()
        self.subscriptions: list[FakeSubscription] = []
        self.published: list[tuple[list[str], Event]] = []
        self.failing_relays: set[str] = set()
        self.closed = False

    @property
    def filters(self) -> list[dict]:
        return [s.filter for s in self.subscriptions]

    def subscribe(self, relays, filter, handlers) -> FakeSubscription:
        sub = FakeSubscription(list(relays), dict(filter), handlers)
        self.subscriptions.append(sub)
        response = self.responses.popleft() if self.responses else None
        asyncio.get_running_loop().call_soon(self._serve, sub, response)
        return sub

    def _serve(self, sub: FakeSubscription, response) -> None:
        if isinstance(response, str):
            sub.relay_close([response for _ in sub.relays])
            return
        if response is None:
            response = sorted(
                (e for e in self.events if matches_filter(sub.filter, e)),
                key=lambda e: e.created_at,
                reverse=True,
            )
            if "limit" in sub.filter:
                response = response[: sub.filter["limit"]]
        for event in response:
            sub.deliver(event)
        sub.eose()

    async def publish(self, relays, event) -> list[PublishResult]:
        results = []
        for relay in relays:
            if relay in self.failing_relays:
                results.append(PublishResult(relay, False, "blocked: test"))
            else:
                results.append(PublishResult(relay, True))
        self.published.append((list(relays), event))
        if any(r.ok for r in results):
            self.events.append(event)
            for sub in self.subscriptions:
                if not sub.closed and matches_filter(sub.filter, event):
                    asyncio.get_running_loop().call_soon(sub.deliver, event)
        return results

    async def close(self) -> None:
        self.closed = True

    def open_subscriptions(self) -> list[FakeSubscription]:
        return [s for s in self.subscriptions if not s.closed]


@pytest.fixture()
def alice() -> LocalSigner:
    return LocalSigner.generate()


@pytest.fixture()
def bob() -> LocalSigner:
    return LocalSigner.generate()


@pytest.fixture()
def carol() -> LocalSigner:
    return LocalSigner.generate()


@pytest.fixture()
def transport() -> FakeRelayTransport:
    return FakeRelayTransport()


@pytest.fixture()
def relays() -> list[str]:
    return ["wss://relay-one.test", "wss://relay-two.test"]

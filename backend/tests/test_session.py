"""Tests for the auth event channel."""

import uuid

from credisphere.core.session import AuthEvent, AuthEventChannel, Session


def _session() -> Session:
    return Session(user_id=uuid.uuid4(), email="analyst@firstbank.com", organization_name="First Bank")


def test_listeners_receive_events_until_unsubscribed():
    channel = AuthEventChannel()
    received = []
    unsubscribe = channel.subscribe(lambda event, session: received.append((event, session)))
    session = _session()

    channel.publish(AuthEvent.SIGNED_IN, session)
    unsubscribe()
    channel.publish(AuthEvent.SIGNED_OUT, None)

    assert received == [(AuthEvent.SIGNED_IN, session)]
    assert channel.listener_count == 0


def test_unsubscribe_twice_is_harmless():
    channel = AuthEventChannel()
    unsubscribe = channel.subscribe(lambda event, session: None)
    unsubscribe()
    unsubscribe()
    assert channel.listener_count == 0


def test_failing_listener_does_not_block_others():
    channel = AuthEventChannel()
    received = []

    def broken(event, session):
        raise RuntimeError("listener bug")

    channel.subscribe(broken)
    channel.subscribe(lambda event, session: received.append(event))

    channel.publish(AuthEvent.SIGNED_UP, _session())

    assert received == [AuthEvent.SIGNED_UP]


def test_session_from_user_copies_identity():
    class FakeUser:
        id = uuid.uuid4()
        email = "analyst@firstbank.com"
        organization_name = "First Bank"

    session = Session.from_user(FakeUser)

    assert session.user_id == FakeUser.id
    assert session.organization_name == "First Bank"

from __future__ import annotations

import pytest

from telephony.state_machine import Effect, SessionEventKind, SessionState, transition

ORDER = [SessionState.CONNECTING, SessionState.OPEN, SessionState.DRAINING, SessionState.CLOSED]


def test_ready_opens_and_flushes_before_keepalive():
    state, effects = transition(SessionState.CONNECTING, SessionEventKind.UPSTREAM_READY)
    assert state is SessionState.OPEN
    assert effects == (Effect.FLUSH_QUEUE, Effect.START_KEEPALIVE)


@pytest.mark.parametrize(
    ("state", "expected"),
    [
        (SessionState.CONNECTING, Effect.ENQUEUE_FRAME),
        (SessionState.OPEN, Effect.FORWARD_FRAME),
        (SessionState.DRAINING, Effect.DISCARD_FRAME),
        (SessionState.CLOSED, Effect.DISCARD_FRAME),
    ],
)
def test_media_routing_depends_on_state(state, expected):
    assert transition(state, SessionEventKind.INBOUND_MEDIA) == (state, (expected,))


@pytest.mark.parametrize(
    "event",
    [SessionEventKind.INBOUND_STOP, SessionEventKind.INBOUND_CLOSED, SessionEventKind.INBOUND_ERROR],
)
def test_inbound_termination_drains_open_session(event):
    state, effects = transition(SessionState.OPEN, event)
    assert state is SessionState.DRAINING
    assert effects == (Effect.STOP_KEEPALIVE, Effect.FINISH_UPSTREAM)


def test_stop_while_connecting_discards_queue():
    state, effects = transition(SessionState.CONNECTING, SessionEventKind.INBOUND_STOP)
    assert state is SessionState.DRAINING
    assert Effect.DISCARD_QUEUE in effects
    assert Effect.FINISH_UPSTREAM in effects


def test_second_drain_trigger_is_a_no_op():
    assert transition(SessionState.DRAINING, SessionEventKind.INBOUND_CLOSED) == (SessionState.DRAINING, ())
    assert transition(SessionState.DRAINING, SessionEventKind.INBOUND_STOP) == (SessionState.DRAINING, ())


@pytest.mark.parametrize("state", [SessionState.CONNECTING, SessionState.OPEN, SessionState.DRAINING])
def test_upstream_close_always_closes(state):
    new_state, effects = transition(state, SessionEventKind.UPSTREAM_CLOSED)
    assert new_state is SessionState.CLOSED
    assert Effect.CLOSE_INBOUND in effects
    assert Effect.STOP_KEEPALIVE in effects


@pytest.mark.parametrize("event", list(SessionEventKind))
def test_closed_is_absorbing(event):
    state, effects = transition(SessionState.CLOSED, event)
    assert state is SessionState.CLOSED
    assert effects in {(), (Effect.DISCARD_FRAME,)}


@pytest.mark.parametrize("state", ORDER)
@pytest.mark.parametrize("event", list(SessionEventKind))
def test_state_never_moves_backwards(state, event):
    new_state, _ = transition(state, event)
    assert ORDER.index(new_state) >= ORDER.index(state)


def test_keepalive_tick_only_sends_while_open():
    assert transition(SessionState.OPEN, SessionEventKind.KEEPALIVE_TICK) == (
        SessionState.OPEN,
        (Effect.SEND_KEEPALIVE,),
    )
    assert transition(SessionState.DRAINING, SessionEventKind.KEEPALIVE_TICK) == (SessionState.DRAINING, ())


def test_upstream_error_keeps_state():
    assert transition(SessionState.OPEN, SessionEventKind.UPSTREAM_ERROR) == (
        SessionState.OPEN,
        (Effect.LOG_UPSTREAM_ERROR,),
    )


def test_transcripts_are_emitted_while_draining():
    assert transition(SessionState.DRAINING, SessionEventKind.UPSTREAM_TRANSCRIPT) == (
        SessionState.DRAINING,
        (Effect.EMIT_TRANSCRIPT,),
    )

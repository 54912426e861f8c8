from xrestsync.remote.response_state import ResponseState


def test_response_state_errors():
    state = ResponseState()
    assert state.had_error is None
    assert state.errors is None

    state.add_error(ValueError("bad thing"), 500)
    state.add_error("another")
    assert state.had_error
    assert state.errors == ["bad thing", "another"]
    assert state.response_code == 500

    state.mark_for_no_errors()
    assert state.had_error is False
    assert state.errors is None
    # Not error related, so it's left alone.
    assert state.response_code == 500


def test_response_state_reset():
    state = ResponseState()
    state.reset(method="GET", path="/api/objects/1")
    state.try_count = 2
    state.add_error("oops", 503)

    state.reset(for_retry=True)
    assert state.try_count == 2
    assert state.had_error is None
    assert state.response_code is None
    assert state.method == "GET"
    assert state.path == "/api/objects/1"

    state.reset(method="DELETE", path="/api/objects/2")
    assert state.try_count == 0
    assert state.method == "DELETE"


def test_response_state_repr():
    state = ResponseState()
    state.reset(method="GET", path="/x")
    state.add_error("oops", 404)
    assert repr(state) == (
        "ResponseState(method='GET', path='/x', response_code=404, had_error=True, try_count=0)"
    )

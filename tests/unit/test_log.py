from policy_watcher.exceptions import ReceiveError
from policy_watcher.log import add_error_processor, categorize_exception


def test_categorize_exception():
    assert categorize_exception(ConnectionResetError) == "TRANSIENT"
    assert categorize_exception(TimeoutError) == "TRANSIENT"
    assert categorize_exception(KeyError) == "BUG"
    assert categorize_exception(ReceiveError) == "ERROR"


def test_error_processor_adds_error_fields():
    try:
        raise ConnectionRefusedError("broker down")
    except ConnectionRefusedError:
        event_dict = add_error_processor(None, "exception", {"event": "Receive failed", "exc_info": True})

    assert event_dict["error_type"] == "builtins.ConnectionRefusedError"
    assert event_dict["error_category"] == "TRANSIENT"


def test_error_processor_accepts_exception_instances():
    event_dict = add_error_processor(None, "error", {"event": "Receive failed", "exc_info": ReceiveError("gone")})

    assert event_dict["error_type"] == "policy_watcher.exceptions.ReceiveError"
    assert event_dict["error_category"] == "ERROR"


def test_error_processor_ignores_plain_events():
    event_dict = add_error_processor(None, "info", {"event": "Watcher connected"})

    assert "error_type" not in event_dict

import pytest

from cask.cask_datatypes import Mode, Page, SetNextInput
from cask.cask_session import HistoryStore, ModeController, PayloadBuffer, InputQueue


def test_history_records_pairs_in_order():
    h = HistoryStore()
    assert h.next_execution_count == 1
    h.record_input("1;")
    h.record_output(["r1"])
    h.record_input("2;")
    h.record_output([])
    assert len(h) == 2
    assert h.input(1) == "1;"
    assert h.output(1) == ["r1"]
    assert h.output(2) == []
    assert h.next_execution_count == 3
    assert h.tail(1) == [(2, "2;")]
    assert h.tail() == [(1, "1;"), (2, "2;")]
    assert h.tail(0) == []


def test_history_copies_result_lists():
    h = HistoryStore()
    results = [1]
    h.record_input("x")
    h.record_output(results)
    results.append(2)
    assert h.output(1) == [1]


def test_history_lookup_out_of_range():
    h = HistoryStore()
    with pytest.raises(IndexError):
        h.input(1)
    h.record_input("a")
    with pytest.raises(IndexError):
        h.input(0)
    with pytest.raises(IndexError):
        h.output(1)


def test_mode_controller_switch():
    modes = ModeController()
    assert modes.mode is Mode.EMBEDDED
    assert modes.switch(Mode.HOST) is Mode.EMBEDDED
    # switching to the active mode is allowed and still counted
    assert modes.switch(Mode.HOST) is Mode.HOST
    assert modes.switch_count == 2
    with pytest.raises(TypeError):
        modes.switch("host")


def test_payload_buffer_messages():
    buf = PayloadBuffer()
    buf.request_page("docs")
    buf.request_next_input("x: 1;", replace=True)
    buf.request_page({"text/html": "<b>hi</b>"}, start=3)
    assert list(buf) == [Page("docs"), SetNextInput("x: 1;", True), Page({"text/html": "<b>hi</b>"}, 3)]
    assert buf.to_messages() == [
        {"source": "page", "data": {"text/plain": "docs"}, "start": 0},
        {"source": "set_next_input", "text": "x: 1;", "replace": True},
        {"source": "page", "data": {"text/html": "<b>hi</b>"}, "start": 3},
    ]
    buf.clear()
    assert len(buf) == 0


def test_input_queue_is_fifo():
    q = InputQueue()
    assert q.pop() is None
    q.enqueue("a")
    q.enqueue("b")
    assert q.has_pending()
    assert len(q) == 2
    assert q.pop() == "a"
    assert q.pop() == "b"
    assert not q.has_pending()

import threading

import pytest

from app.services.event_log import EventLog, InboundEvent


class TestAdmit:
    def test_seq_starts_at_one_and_grows_by_one(self):
        log = EventLog()
        seqs = [log.admit(sender="5511", text=f"msg {i}").seq for i in range(5)]
        assert seqs == [1, 2, 3, 4, 5]

    def test_capacity_evicts_oldest_without_reusing_seq(self):
        log = EventLog(capacity=500)
        for i in range(501):
            log.admit(sender="5511", text=f"msg {i}")

        events, next_cursor = log.read_after(0)

        assert len(log) == 500
        assert len(events) == 500
        assert events[0].seq == 2
        assert events[-1].seq == 501
        assert next_cursor == 501
        assert log.admit(sender="5511", text="after eviction").seq == 502

    def test_concurrent_admits_are_gapless(self):
        log = EventLog(capacity=1000)

        def worker():
            for _ in range(100):
                log.admit(sender="5511", text="hi")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        events, next_cursor = log.read_after(0)
        assert [event.seq for event in events] == list(range(1, 801))
        assert next_cursor == 800

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            EventLog(capacity=0)


class TestReadAfter:
    def test_empty_log(self):
        assert EventLog().read_after(0) == ([], 0)

    def test_returns_only_newer_events(self):
        log = EventLog()
        for i in range(3):
            log.admit(sender="5511", text=f"msg {i}")

        events, next_cursor = log.read_after(2)

        assert [event.seq for event in events] == [3]
        assert next_cursor == 3

    def test_cursor_ahead_of_log_still_reports_highest_seq(self):
        log = EventLog()
        log.admit(sender="5511", text="hi")
        assert log.read_after(10) == ([], 1)

    def test_repeated_reads_are_identical(self):
        log = EventLog()
        log.admit(sender="5511", text="hi", author="Ana")
        assert log.read_after(0) == log.read_after(0)


class TestInboundEvent:
    def test_to_dict_uses_wire_names(self):
        log = EventLog()
        event = log.admit(sender="5511", text="hi", author="Ana", instance="inst")
        data = event.to_dict()

        assert data["seq"] == 1
        assert data["channel"] == "whatsapp"
        assert data["type"] == "whatsapp_message"
        assert data["author"] == "Ana"
        assert data["instance"] == "inst"
        assert "receivedAt" in data
        assert "received_at" not in data

    def test_from_dict_round_trip(self):
        event = EventLog().admit(sender="5511", text="hi")
        assert InboundEvent.from_dict(event.to_dict()) == event

import unittest
from unittest.mock import MagicMock

from opencode_state.api_models import MessageWithParts
from opencode_state.delta_dedup import SequenceDeltaDedup, SnapshotDeltaDedup
from opencode_state.events import decode_event
from opencode_state.models import Message, MessageRole, Session, SessionStatusType
from opencode_state.parts import TextPart, ToolStatus
from opencode_state.session_store import SessionStore
from tests.store.base import (
    SessionStoreTestCase,
    envelope,
    message_info,
    session_info,
    text_part,
    tool_part,
)


class SessionUpsertTests(SessionStoreTestCase):
    def test_session_update_replaces_whole_record(self) -> None:
        self._apply("session.created", {"info": {**session_info(), "directory": "/repo"}})
        self._apply("session.updated", {"info": session_info(title="Renamed", updated=2_000)})

        session = self._store.get_session("ses_1")
        self.assertIsNotNone(session)
        self.assertEqual("Renamed", session.title)
        self.assertIsNone(session.directory)

    def test_duplicate_snapshot_is_a_no_op(self) -> None:
        self.assertTrue(self._apply("session.created", {"info": session_info()}))
        before = self._state()
        self.assertFalse(self._apply("session.created", {"info": session_info()}))
        self.assertEqual(before, self._state())

    def test_stale_session_snapshot_is_rejected(self) -> None:
        self._apply("session.updated", {"info": session_info(title="New", updated=5_000)})
        changed = self._apply("session.updated", {"info": session_info(title="Old", updated=4_000)})

        self.assertFalse(changed)
        self.assertEqual("New", self._store.get_session("ses_1").title)

    def test_local_create_is_visible_to_readers(self) -> None:
        self._store.upsert_session(Session(id="ses_local", title="Local"))
        self.assertEqual(["ses_local"], [s.id for s in self._store.list_sessions()])


class MessageUpsertTests(SessionStoreTestCase):
    def test_message_waits_for_its_session(self) -> None:
        self.assertFalse(self._apply("message.created", {"info": message_info()}))
        self.assertIsNone(self._store.get_message("msg_1"))
        self.assertEqual(1, self._store.pending_count)

        self._apply("session.created", {"info": session_info()})

        self.assertIsNotNone(self._store.get_message("msg_1"))
        self.assertEqual(0, self._store.pending_count)
        self.assertEqual(["msg_1"], [m.id for m in self._store.messages_for("ses_1")])

    def test_messages_keep_arrival_order(self) -> None:
        self._apply("session.created", {"info": session_info()})
        for mid in ("msg_b", "msg_a", "msg_c"):
            self._apply("message.updated", {"info": message_info(mid)})
        self._apply("message.updated", {"info": {**message_info("msg_a"), "finish": "stop"}})

        self.assertEqual(["msg_b", "msg_a", "msg_c"], [m.id for m in self._store.messages_for("ses_1")])
        self.assertEqual("stop", self._store.get_message("msg_a").finish)

    def test_pending_buffer_evicts_oldest_past_limit(self) -> None:
        store = SessionStore(pending_limit=2)
        for mid in ("msg_1", "msg_2", "msg_3"):
            store.apply(decode_event("message.created", envelope("message.created", {"info": message_info(mid)})))
        self.assertEqual(2, store.pending_count)

        store.apply(decode_event("session.created", envelope("session.created", {"info": session_info()})))

        self.assertEqual(["msg_2", "msg_3"], [m.id for m in store.messages_for("ses_1")])


class PartUpdateTests(SessionStoreTestCase):
    def test_deltas_append_regardless_of_payload_text(self) -> None:
        self._seed_message()
        self._apply("message.part.updated", {"part": text_part(text="")})
        self._apply("message.part.updated", {"part": text_part(text="Hello"), "delta": "Hello"})
        self._apply("message.part.updated", {"part": text_part(text="something else"), "delta": " world"})

        part = self._store.get_part("prt_1")
        self.assertIsInstance(part, TextPart)
        self.assertEqual("Hello world", part.text)

    def test_delta_without_stored_part_starts_from_empty_text(self) -> None:
        self._seed_message()
        self._apply("message.part.updated", {"part": text_part(text="Hello Hello"), "delta": "Hello"})
        self.assertEqual("Hello", self._store.get_part("prt_1").text)

    def test_full_snapshot_replaces_streamed_text(self) -> None:
        self._seed_message()
        self._apply("message.part.updated", {"part": text_part(), "delta": "Hel"})
        self._apply("message.part.updated", {"part": text_part(text="Hello, final")})
        self.assertEqual("Hello, final", self._store.get_part("prt_1").text)

    def test_reasoning_parts_stream_like_text(self) -> None:
        self._seed_message()
        part = {**text_part(), "type": "reasoning"}
        self._apply("message.part.updated", {"part": part, "delta": "think"})
        self._apply("message.part.updated", {"part": part, "delta": "ing"})
        self.assertEqual("thinking", self._store.get_part("prt_1").text)

    def test_duplicate_part_snapshot_is_idempotent(self) -> None:
        self._seed_message()
        self.assertTrue(self._apply("message.part.updated", {"part": text_part(text="done")}))
        before = self._state()
        self.assertFalse(self._apply("message.part.updated", {"part": text_part(text="done")}))
        self.assertEqual(before, self._state())

    def test_parts_wait_for_message_and_replay_in_order(self) -> None:
        self._apply("session.created", {"info": session_info()})
        self._apply("message.part.updated", {"part": text_part(), "delta": "a"})
        self._apply("message.part.updated", {"part": text_part(), "delta": "b"})
        self._apply("message.part.updated", {"part": text_part("prt_2", text="second")})
        self.assertIsNone(self._store.get_part("prt_1"))

        self._apply("message.updated", {"info": message_info()})

        self.assertEqual("ab", self._store.get_part("prt_1").text)
        self.assertEqual(["prt_1", "prt_2"], [p.id for p in self._store.parts_for("msg_1")])

    def test_part_from_a_foreign_session_is_dropped(self) -> None:
        self._seed_message()
        self.assertFalse(self._apply("message.part.updated", {"part": text_part(session_id="ses_other")}))
        self.assertIsNone(self._store.get_part("prt_1"))

    def test_part_without_message_id_keeps_stored_owner(self) -> None:
        self._seed_message()
        self._apply("message.part.updated", {"part": text_part(text="v1")})
        orphan = {k: v for k, v in text_part(text="v2").items() if k != "messageID"}
        self._apply("message.part.updated", {"part": orphan})

        part = self._store.get_part("prt_1")
        self.assertEqual("v2", part.text)
        self.assertEqual("msg_1", part.message_id)


class ToolTransitionTests(SessionStoreTestCase):
    def test_forward_sequence_is_accepted(self) -> None:
        self._seed_message()
        for status in ("pending", "running", "completed"):
            self.assertTrue(self._apply("message.part.updated", {"part": tool_part(status, output=status)}))
        self.assertEqual(ToolStatus.COMPLETED, self._store.get_part("prt_tool").state.status)

    def test_regression_is_rejected_without_raising(self) -> None:
        self._seed_message()
        self._apply("message.part.updated", {"part": tool_part("running")})
        self._apply("message.part.updated", {"part": tool_part("completed", output="ok")})

        changed = self._apply("message.part.updated", {"part": tool_part("running")})

        self.assertFalse(changed)
        state = self._store.get_part("prt_tool").state
        self.assertEqual(ToolStatus.COMPLETED, state.status)
        self.assertEqual("ok", state.output)

    def test_terminal_status_cannot_switch(self) -> None:
        self._seed_message()
        self._apply("message.part.updated", {"part": tool_part("error", error="boom")})
        self.assertFalse(self._apply("message.part.updated", {"part": tool_part("completed")}))
        self.assertEqual(ToolStatus.ERROR, self._store.get_part("prt_tool").state.status)

    def test_same_status_update_is_applied(self) -> None:
        self._seed_message()
        self._apply("message.part.updated", {"part": tool_part("completed", output="ok")})
        self.assertTrue(
            self._apply("message.part.updated", {"part": tool_part("completed", output="ok", time={"compacted": 9})})
        )
        self.assertEqual(9, self._store.get_part("prt_tool").state.time.compacted)

    def test_unrecognised_status_updates_running_tool(self) -> None:
        self._seed_message()
        self._apply("message.part.updated", {"part": tool_part("running")})

        self.assertTrue(self._apply("message.part.updated", {"part": tool_part("cancelled", output="partial")}))

        state = self._store.get_part("prt_tool").state
        self.assertEqual(ToolStatus.UNKNOWN, state.status)
        self.assertEqual("cancelled", state.raw_status)
        self.assertEqual("partial", state.output)

    def test_unrecognised_status_never_replaces_terminal(self) -> None:
        self._seed_message()
        self._apply("message.part.updated", {"part": tool_part("completed", output="ok")})
        self.assertFalse(self._apply("message.part.updated", {"part": tool_part("cancelled")}))
        self.assertEqual(ToolStatus.COMPLETED, self._store.get_part("prt_tool").state.status)


class PartRemovalTests(SessionStoreTestCase):
    def test_removing_unknown_part_is_a_no_op(self) -> None:
        before = self._state()
        changed = self._apply("message.part.removed", {"sessionID": "ses_1", "messageID": "msg_1", "partID": "nope"})
        self.assertFalse(changed)
        self.assertEqual(before, self._state())

    def test_removing_part_updates_message_order(self) -> None:
        self._seed_message()
        self._apply("message.part.updated", {"part": text_part("prt_1")})
        self._apply("message.part.updated", {"part": text_part("prt_2")})

        self.assertTrue(self._apply("message.part.removed", {"messageID": "msg_1", "partID": "prt_1"}))

        self.assertIsNone(self._store.get_part("prt_1"))
        self.assertEqual(["prt_2"], [p.id for p in self._store.parts_for("msg_1")])

    def test_removing_buffered_part_drops_it(self) -> None:
        self._apply("session.created", {"info": session_info()})
        self._apply("message.part.updated", {"part": text_part()})
        self._apply("message.part.removed", {"messageID": "msg_1", "partID": "prt_1"})
        self._apply("message.updated", {"info": message_info()})
        self.assertEqual([], self._store.parts_for("msg_1"))


class SessionStatusTests(SessionStoreTestCase):
    def test_idle_clears_retry_state(self) -> None:
        self._apply(
            "session.status",
            {"sessionID": "ses_1", "status": {"type": "retry", "attempt": 2, "message": "rate limited"}},
        )
        self.assertEqual(2, self._store.status_for("ses_1").attempt)

        self._apply("session.idle", {"sessionID": "ses_1"})

        status = self._store.status_for("ses_1")
        self.assertEqual(SessionStatusType.IDLE, status.type)
        self.assertIsNone(status.attempt)
        self.assertIsNone(status.message)

    def test_retry_attempt_regression_is_rejected(self) -> None:
        self._apply("session.status", {"sessionID": "ses_1", "status": {"type": "retry", "attempt": 3}})
        changed = self._apply("session.status", {"sessionID": "ses_1", "status": {"type": "retry", "attempt": 1}})
        self.assertFalse(changed)
        self.assertEqual(3, self._store.status_for("ses_1").attempt)

    def test_unrecognised_status_type_is_stored(self) -> None:
        self._apply("session.status", {"sessionID": "ses_1", "status": {"type": "busy"}})
        self.assertTrue(self._apply("session.status", {"sessionID": "ses_1", "status": {"type": "compacting"}}))
        status = self._store.status_for("ses_1")
        self.assertEqual(SessionStatusType.UNKNOWN, status.type)
        self.assertEqual("compacting", status.raw_type)

    def test_error_is_stored_independently_of_status(self) -> None:
        self._apply("session.status", {"sessionID": "ses_1", "status": {"type": "busy"}})
        self._apply(
            "session.error",
            {"sessionID": "ses_1", "error": {"name": "APIError", "data": {"message": "overloaded"}}},
        )

        self.assertEqual(SessionStatusType.BUSY, self._store.status_for("ses_1").type)
        error = self._store.error_for("ses_1")
        self.assertEqual("APIError", error.name)
        self.assertEqual("overloaded", error.message)


class StreamControlTests(SessionStoreTestCase):
    def test_unknown_event_changes_nothing(self) -> None:
        self._seed_message()
        before = self._state()
        event = decode_event("some.future.event", envelope("some.future.event", {"sessionID": "ses_1"}))
        self.assertFalse(self._store.apply(event))
        self.assertEqual(before, self._state())

    def test_server_connected_only_sets_flag(self) -> None:
        before = self._state()
        self._apply("server.connected", {})
        self.assertTrue(self._store.connected)
        self.assertEqual(before, self._state())
        self._store.mark_disconnected()
        self.assertFalse(self._store.connected)

    def test_connected_flag_read_under_lock(self) -> None:
        lock = MagicMock()
        self._store._lock = lock
        self.assertFalse(self._store.connected)
        lock.__enter__.assert_called_once()


class DedupIntegrationTests(unittest.TestCase):
    def _seeded(self, store: SessionStore) -> SessionStore:
        store.apply(decode_event("session.created", envelope("session.created", {"info": session_info()})))
        store.apply(decode_event("message.updated", envelope("message.updated", {"info": message_info()})))
        return store

    def test_sequence_dedup_drops_redelivered_delta(self) -> None:
        store = self._seeded(SessionStore(delta_dedup=SequenceDeltaDedup()))
        record = envelope("message.part.updated", {"part": text_part(text="Hi"), "delta": "Hi", "seq": 1})
        store.apply(decode_event("message.part.updated", record))
        store.apply(decode_event("message.part.updated", record))
        self.assertEqual("Hi", store.get_part("prt_1").text)

    def test_snapshot_dedup_drops_redelivered_delta(self) -> None:
        store = self._seeded(SessionStore(delta_dedup=SnapshotDeltaDedup()))
        first = envelope("message.part.updated", {"part": text_part(text="Hello"), "delta": "Hello"})
        second = envelope("message.part.updated", {"part": text_part(text="Hello world"), "delta": " world"})
        for record in (first, second, second):
            store.apply(decode_event("message.part.updated", record))
        self.assertEqual("Hello world", store.get_part("prt_1").text)


class LoadMessagesTests(unittest.TestCase):
    def test_loaded_transcript_populates_store(self) -> None:
        store = SessionStore()
        store.apply(decode_event("session.created", envelope("session.created", {"info": session_info()})))
        item = MessageWithParts(
            info=Message(id="msg_1", session_id="ses_1", role=MessageRole.USER),
            parts=(TextPart(id="prt_1", session_id="ses_1", message_id="msg_1", text="hi"),),
        )

        store.load_messages([item])

        self.assertEqual(MessageRole.USER, store.get_message("msg_1").role)
        self.assertEqual(["hi"], [p.text for p in store.parts_for("msg_1")])

    def test_reload_drops_parts_missing_from_fetched_message(self) -> None:
        store = SessionStore()
        store.apply(decode_event("session.created", envelope("session.created", {"info": session_info()})))
        store.apply(decode_event("message.updated", envelope("message.updated", {"info": message_info()})))
        store.apply(
            decode_event("message.part.updated", envelope("message.part.updated", {"part": text_part("prt_gone", text="old")}))
        )
        item = MessageWithParts(
            info=Message(id="msg_1", session_id="ses_1", role=MessageRole.ASSISTANT),
            parts=(TextPart(id="prt_1", session_id="ses_1", message_id="msg_1", text="kept"),),
        )

        store.load_messages([item])

        self.assertEqual(["prt_1"], [p.id for p in store.parts_for("msg_1")])
        self.assertIsNone(store.get_part("prt_gone"))

    def test_session_reload_drops_messages_missing_from_transcript(self) -> None:
        store = SessionStore()
        store.apply(decode_event("session.created", envelope("session.created", {"info": session_info()})))
        for message_id in ("msg_1", "msg_2"):
            store.apply(decode_event("message.updated", envelope("message.updated", {"info": message_info(message_id)})))
        store.apply(
            decode_event(
                "message.part.updated",
                envelope("message.part.updated", {"part": text_part("prt_2", "msg_2", text="stale")}),
            )
        )
        item = MessageWithParts(info=Message(id="msg_1", session_id="ses_1", role=MessageRole.USER), parts=())

        store.load_messages([item], session_id="ses_1")

        self.assertEqual(["msg_1"], [m.id for m in store.messages_for("ses_1")])
        self.assertIsNone(store.get_message("msg_2"))
        self.assertIsNone(store.get_part("prt_2"))
        self.assertNotIn("msg_2", store.snapshot().message_parts)

    def test_reload_without_session_keeps_other_messages(self) -> None:
        store = SessionStore()
        store.apply(decode_event("session.created", envelope("session.created", {"info": session_info()})))
        store.apply(decode_event("message.updated", envelope("message.updated", {"info": message_info("msg_2")})))
        item = MessageWithParts(info=Message(id="msg_1", session_id="ses_1", role=MessageRole.USER), parts=())

        store.load_messages([item])

        self.assertEqual(["msg_2", "msg_1"], [m.id for m in store.messages_for("ses_1")])


if __name__ == "__main__":
    unittest.main()

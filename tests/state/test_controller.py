from __future__ import annotations

import asyncio

from dify_chat.models.chat import ConversationSummary, Message, ResourceCitation, StagedFile, UsageStatus
from dify_chat.services.api import ChatApiError
from dify_chat.services.usage import PRO_PLAN, PlanLimits, UsageLedger
from dify_chat.state import ChatController


def test_load_conversations_populates_registry(controller, client, store):
    client.conversations = [ConversationSummary("a", "A"), ConversationSummary("b", "B")]

    asyncio.run(controller.load_conversations("user-1"))

    assert {s.conversation_id for s in store.value.conversations} == {"a", "b"}


def test_load_conversations_failure_keeps_registry(controller, client, store, logger):
    controller.registry.upsert(ConversationSummary("keep", "Keep"))
    client.conversations = ChatApiError("nope", status_code=500)

    asyncio.run(controller.load_conversations("user-1"))

    assert [s.conversation_id for s in store.value.conversations] == ["keep"]
    assert "chat.conversations.failed" in logger.names()


def test_open_conversation_hydrates_and_primes_cache(controller, client, store):
    citation = ResourceCitation("doc", 1, "text", 0.6)
    client.history["c1"] = [
        Message(id="m1:query", role="user", content="q"),
        Message(id="m1", role="assistant", content="a", resources=[citation]),
    ]

    asyncio.run(controller.open_conversation("c1", "user-1"))

    state = store.value
    assert state.active_key == "c1"
    assert state.active_conversation_id == "c1"
    assert [m.id for m in state.active_messages] == ["m1:query", "m1"]
    assert state.resources["c1"] == [citation]


def test_open_conversation_failure_leaves_empty_timeline(controller, client, store, logger):
    client.history["c1"] = ChatApiError("gone", status_code=404)

    asyncio.run(controller.open_conversation("c1", "user-1"))

    assert store.value.timelines["c1"] == []
    assert "chat.history.failed" in logger.names()


def test_new_chat_resets_composer_and_discards_old_draft(controller, store):
    controller.set_input("unsent")
    controller.resources.set("draft-test", [ResourceCitation("d", 1, "x", 0.1)])

    key = controller.new_chat()

    state = store.value
    assert key.startswith("draft-")
    assert state.active_key == key
    assert state.composer.text == ""
    assert "draft-test" not in state.resources


def test_stage_and_remove_files(controller, store):
    rejected = controller.stage_files(
        [StagedFile("a.pdf", 1, "application/pdf"), StagedFile("b.bin", 1, "application/octet-stream")]
    )
    controller.stage_files([StagedFile("c.png", 1, "image/png")])

    controller.remove_staged_file(0)
    controller.remove_staged_file(9)

    assert rejected == ["b.bin: unsupported file type"]
    assert [f.name for f in store.value.composer.staged_files] == ["c.png"]


def test_stage_files_blocked_when_uploads_disabled(controller, store):
    store.update(lambda prev: {"usage": UsageStatus(upload_disabled=True, reason="Upload limit reached.")})

    rejected = controller.stage_files([StagedFile("a.pdf", 1, "application/pdf")])

    assert rejected == ["Upload limit reached."]
    assert store.value.composer.staged_files == []


def test_stage_files_uses_smaller_plan_upload_limit(store, client, settings, logger):
    ledger = UsageLedger(default_plan=PlanLimits("tiny", monthly_messages=5, monthly_uploads=5, max_upload_size_mb=1))
    controller = ChatController(store=store, client=client, settings=settings, logger=logger, usage=ledger)
    two_mb = 2 * 1024 * 1024

    rejected = controller.stage_files([StagedFile("big.pdf", two_mb, "application/pdf")], "user-1")
    ledger.set_plan("user-1", PRO_PLAN)
    rejected_on_pro = controller.stage_files([StagedFile("big.pdf", two_mb, "application/pdf")], "user-1")

    assert rejected == ["big.pdf: larger than 1 MB"]
    assert rejected_on_pro == []
    assert [f.name for f in store.value.composer.staged_files] == ["big.pdf"]

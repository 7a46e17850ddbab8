from __future__ import annotations

from dify_chat.models.chat import Attachment, ServerAttachment, StagedFile
from dify_chat.state import AttachmentRegistrar, classify_file_type


def _files(*names: str) -> list[StagedFile]:
    return [StagedFile(name=name, size=100 + idx, content_type="image/png") for idx, name in enumerate(names)]


def test_stage_local_files_synthesizes_unique_local_ids(logger):
    registrar = AttachmentRegistrar(logger)

    staged = registrar.stage_local_files(_files("a.png", "b.png", "c.png"), timestamp=1700000000.5)

    assert [a.local_id for a in staged] == [
        "local-1700000000500-0",
        "local-1700000000500-1",
        "local-1700000000500-2",
    ]
    assert [a.file_name for a in staged] == ["a.png", "b.png", "c.png"]
    assert [a.file_size for a in staged] == [100, 101, 102]
    assert all(a.persistent_id is None and a.url is None for a in staged)


def test_stage_local_files_is_pure(logger):
    registrar = AttachmentRegistrar(logger)
    files = _files("a.png")

    first = registrar.stage_local_files(files, timestamp=1.0)
    second = registrar.stage_local_files(files, timestamp=1.0)

    assert first == second


def test_merge_returns_new_objects_and_leaves_inputs(logger):
    registrar = AttachmentRegistrar(logger)
    local = registrar.stage_local_files(_files("a.png", "b.png"), timestamp=2.0)

    merged = registrar.merge_server_result(local, [ServerAttachment("p0", "u0"), ServerAttachment("p1", "u1")])

    assert [m.persistent_id for m in merged] == ["p0", "p1"]
    assert all(a.persistent_id is None for a in local)
    assert all(m is not a for m, a in zip(merged, local))


def test_merge_ignores_extra_server_records(logger):
    registrar = AttachmentRegistrar(logger)
    local = registrar.stage_local_files(_files("a.png"), timestamp=2.0)

    merged = registrar.merge_server_result(local, [ServerAttachment("p0"), ServerAttachment("p1")])

    assert len(merged) == 1
    assert merged[0].persistent_id == "p0"
    assert "attachments.merge.count_mismatch" in logger.names()


def test_merge_keeps_local_values_when_server_field_absent(logger):
    registrar = AttachmentRegistrar(logger)
    local = [Attachment("l0", "a.png", 1, "image/png", persistent_id="old", url="https://old")]

    merged = registrar.merge_server_result(local, [ServerAttachment(persistent_id="new")])

    assert merged[0].persistent_id == "new"
    assert merged[0].url == "https://old"


def test_classify_file_type_is_total():
    assert classify_file_type("image/png") == "image"
    assert classify_file_type("IMAGE/JPEG") == "image"
    assert classify_file_type("audio/mpeg") == "audio"
    assert classify_file_type("video/mp4") == "video"
    assert classify_file_type("application/pdf") == "document"
    assert classify_file_type("text/plain") == "document"
    assert classify_file_type("") == "document"
    assert classify_file_type(None) == "document"
    assert classify_file_type("imagery/odd") == "document"


def test_validate_files_applies_type_size_and_count(logger):
    registrar = AttachmentRegistrar(logger)
    files = [
        StagedFile("ok.pdf", 1024, "application/pdf"),
        StagedFile("run.exe", 10, "application/x-msdownload"),
        StagedFile("huge.png", 3 * 1024 * 1024, "image/png"),
        StagedFile("two.png", 10, "image/png"),
        StagedFile("three.png", 10, "image/png"),
    ]

    accepted, rejected = registrar.validate_files(files, max_files=2, max_file_size_mb=2)

    assert [f.name for f in accepted] == ["ok.pdf", "two.png"]
    assert rejected == [
        "run.exe: unsupported file type",
        "huge.png: larger than 2 MB",
        "three.png: at most 2 files per message",
    ]

from pathlib import Path

import pytest

from conftest import FakeModelClient, text_response, tool_call_response
from grounded_chat.agent.orchestrator import TurnOrchestrator
from grounded_chat.agent.registry import ToolRegistry
from grounded_chat.agent.tools import register_builtin_tools
from grounded_chat.cli.main import SEED_HISTORY, open_chat_session
from grounded_chat.config import AssistantConfig, ClientConfig, GroundingConfig
from grounded_chat.errors import UploadError
from grounded_chat.resources.lifecycle import ResourceLifecycleManager
from grounded_chat.types import FilePart, TextPart, ToolResultPart


def _config(document: Path, **grounding) -> AssistantConfig:
    return AssistantConfig(
        client=ClientConfig(api_key="test-key"),
        grounding=GroundingConfig(document_path=document, cache_model="gemini-cache", **grounding),
    )


def _registry(root: Path) -> ToolRegistry:
    registry = ToolRegistry()
    register_builtin_tools(registry, working_root=root)
    return registry


def test_document_present_uses_cache_and_releases_in_order(tmp_path: Path) -> None:
    document = tmp_path / "ML_BOOK_250.pdf"
    document.write_bytes(b"%PDF-1.4")
    client = FakeModelClient([text_response("Page 10 introduces gradient descent.")])
    registry = _registry(tmp_path)

    with ResourceLifecycleManager(client) as resources:
        session = open_chat_session(_config(document), client, resources, registry)
        assert session.history == SEED_HISTORY
        outcome = TurnOrchestrator(session, registry).handle_input("What is on page 10?")

    assert outcome is not None and outcome.answer == "Page 10 introduces gradient descent."
    assert session.handle.uses_cache is True
    assert client.cache_tools == registry.declarations()
    assert client.sent[0] == [TextPart("Using the document you were provided, What is on page 10?")]
    assert client.operations() == [
        "upload_document",
        "create_cached_context",
        "delete_cached_context",
        "delete_document",
    ]


def test_document_absent_falls_back_to_bare_model(tmp_path: Path) -> None:
    client = FakeModelClient([text_response("I have no document.")])
    registry = _registry(tmp_path)

    with ResourceLifecycleManager(client) as resources:
        session = open_chat_session(_config(tmp_path / "missing.pdf"), client, resources, registry)
        TurnOrchestrator(session, registry).handle_input("hello")

    assert session.handle.uses_cache is False
    assert session.handle.model == "gemini-2.5-flash"
    assert session.handle.tools == tuple(registry.declarations())
    assert client.operations() == []


def test_tool_call_writes_file_and_sends_continuation_before_answer(tmp_path: Path) -> None:
    client = FakeModelClient(
        [
            tool_call_response("file_write", fileName="notes", content="line1\\nline2"),
            text_response("Saved your notes."),
        ]
    )
    registry = _registry(tmp_path)

    with ResourceLifecycleManager(client) as resources:
        session = open_chat_session(_config(tmp_path / "missing.pdf"), client, resources, registry)
        outcome = TurnOrchestrator(session, registry).handle_input("Save my notes")

    notes = tmp_path / "results" / "notes.txt"
    assert notes.read_text(encoding="utf-8").splitlines() == ["line1", "line2"]
    assert len(client.sent) == 2
    assert client.sent[1] == [
        ToolResultPart(name="file_write", response={"result": "Wrote notes.txt"}, call_id="call-1")
    ]
    assert outcome is not None and outcome.answer == "Saved your notes."
    assert len(session.history) == len(SEED_HISTORY) + 4


def test_no_cache_mode_attaches_document_to_seed(tmp_path: Path) -> None:
    document = tmp_path / "doc.pdf"
    document.write_bytes(b"%PDF-1.4")
    client = FakeModelClient()
    registry = _registry(tmp_path)

    with ResourceLifecycleManager(client) as resources:
        session = open_chat_session(_config(document, use_cache=False), client, resources, registry)

    assert "create_cached_context" not in client.operations()
    assert session.history[0].parts[0] == FilePart(uri="https://files.example/doc-1", mime_type="application/pdf")
    assert session.handle.system_instruction is not None
    assert client.operations() == ["upload_document", "delete_document"]


def test_optional_document_upload_failure_falls_back(tmp_path: Path) -> None:
    document = tmp_path / "doc.pdf"
    document.write_bytes(b"%PDF-1.4")
    client = FakeModelClient()
    client.fail_upload = UploadError("bad file")

    with ResourceLifecycleManager(client) as resources:
        session = open_chat_session(_config(document), client, resources, _registry(tmp_path))

    assert session.handle.uses_cache is False


def test_required_document_missing_is_fatal(tmp_path: Path) -> None:
    client = FakeModelClient()

    with pytest.raises(UploadError):
        with ResourceLifecycleManager(client) as resources:
            open_chat_session(
                _config(tmp_path / "missing.pdf", require_document=True),
                client,
                resources,
                _registry(tmp_path),
            )

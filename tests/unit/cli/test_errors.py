"""Tests for doconvo rich error messages."""

from __future__ import annotations

import pytest

from doconvo.cli.errors import (
    err_config,
    err_document_not_found,
    err_no_api_key,
    err_path_not_found,
    err_persistence,
    err_scan_failed,
    err_session_not_found,
    err_turn_failed,
    warn_no_documents,
)


def _has_action(msg: str) -> bool:
    """Every message names a cause AND something the user can do about it."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "add one:", "pass ", "fix ", "check ", "pick "])


@pytest.mark.parametrize("msg", [
    err_no_api_key("openai/gpt-4o-mini", "Set the OPENAI_API_KEY environment variable."),
    err_config("rag.similarity_threshold must be in [0, 1]"),
    err_path_not_found("/nope"),
    err_document_not_found(3),
    err_session_not_found(4),
    err_scan_failed("walk failed"),
    err_turn_failed("connection refused"),
    err_persistence("disk I/O error"),
    warn_no_documents(),
])
def test_every_message_is_actionable(msg):
    assert _has_action(msg)


def test_document_not_found_points_to_list():
    msg = err_document_not_found(3)
    assert "3" in msg
    assert "doconvo docs list" in msg


def test_session_not_found_points_to_list():
    assert "doconvo sessions list" in err_session_not_found(4)


def test_no_api_key_includes_detail_and_model():
    msg = err_no_api_key("openai/gpt-4o-mini", "Set the OPENAI_API_KEY environment variable.")
    assert "openai/gpt-4o-mini" in msg
    assert "OPENAI_API_KEY" in msg

import structlog

from seopages_agent.logging import mask_secrets, task_context


def test_mask_secrets_hides_credentials_only():
    event = {"event": "Calling endpoint", "api_key": "sk-123", "Authorization": "Bearer x", "model": "gpt-4.1"}

    masked = mask_secrets(None, "info", event)

    assert masked["api_key"] == "***"
    assert masked["Authorization"] == "***"
    assert masked["model"] == "gpt-4.1"


def test_task_context_binds_and_restores_ids():
    structlog.contextvars.clear_contextvars()

    with task_context("s1", "item-1"):
        assert structlog.contextvars.get_contextvars() == {"session_id": "s1", "task_id": "item-1"}

    assert structlog.contextvars.get_contextvars() == {}

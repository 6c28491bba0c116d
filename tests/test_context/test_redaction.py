from seopages_agent.config import ContextConfig
from seopages_agent.redaction import (
    ArtifactResult,
    GenericResult,
    OpaqueResult,
    PayloadRedactor,
    classify_result,
)
from seopages_agent.session import INVOCATION_CALL, ROLE_ASSISTANT, ROLE_USER, ToolInvocation, Turn


def _tool_turn(tool_name: str, result, call_id: str = "call_1") -> Turn:
    return Turn(
        role=ROLE_ASSISTANT,
        content="",
        tool_invocations=(ToolInvocation(call_id, tool_name, {}, result),),
    )


def test_persisted_artifact_content_is_replaced_by_marker():
    redactor = PayloadRedactor()
    result = {"content": "x" * 50_000, "needsUpload": True, "publicUrl": "https://x/y"}

    redacted = redactor.redact_result("assemble_page", result)

    assert redacted == {"contentRemoved": True, "needsUpload": True, "publicUrl": "https://x/y"}
    assert "content" in result


def test_small_generic_result_is_unchanged():
    redactor = PayloadRedactor()
    result = {"content": "y" * 200}

    assert redactor.redact_result("web_search", result) == {"content": "y" * 200}


def test_artifact_keeps_identity_fields_and_strips_every_blob():
    redactor = PayloadRedactor()
    result = {
        "needsUpload": True,
        "publicUrl": "https://cdn/page.html",
        "fileId": "file-1",
        "filename": "page.html",
        "mimeType": "text/html",
        "size": 1234,
        "markdown_content": "# big",
        "html_content": "<html></html>",
        "base64": "AAAA",
        "base64Content": "BBBB",
        "data": {"raw": "CCCC"},
    }

    redacted = redactor.redact_result("markdown_to_html_report", result)

    for key in ("publicUrl", "fileId", "filename", "mimeType", "size"):
        assert redacted[key] == result[key]
    for key in ("markdown_content", "html_content", "base64", "base64Content", "data"):
        assert key not in redacted
    assert redacted["markdownContentRemoved"] is True
    assert redacted["htmlContentRemoved"] is True
    assert redacted["base64Removed"] is True
    assert redacted["dataRemoved"] is True


def test_image_generation_results_are_rebuilt_element_wise():
    redactor = PayloadRedactor()
    result = {
        "images": [
            {
                "status": "success",
                "publicUrl": "https://cdn/1.png",
                "fileId": "img-1",
                "content": "iVBOR" * 1000,
                "metadata": {"title": "Hero", "provider": "azure", "prompt": "long prompt"},
            },
            {"status": "error", "error": "quota exceeded"},
        ]
    }

    redacted = redactor.redact_result("generate_images", result)

    first, second = redacted["images"]
    assert first == {
        "status": "success",
        "publicUrl": "https://cdn/1.png",
        "fileId": "img-1",
        "metadata": {"title": "Hero", "provider": "azure"},
        "contentRemoved": True,
    }
    assert second == {"status": "error", "error": "quota exceeded", "contentRemoved": True}


def test_generic_thresholds_differ_by_field_kind():
    redactor = PayloadRedactor(ContextConfig(content_truncate_chars=100, markup_truncate_chars=10))
    result = {
        "content": "c" * 50,
        "markdown_content": "m" * 11,
        "html_content": "h" * 10,
        "images": [{"content": "i" * 101, "url": "u"}, {"content": "i" * 5}],
    }

    redacted = redactor.redact_result("extract_content", result)

    assert redacted["content"] == "c" * 50
    assert "markdown_content" not in redacted
    assert redacted["markdownContentTruncated"] is True
    assert redacted["html_content"] == "h" * 10
    assert redacted["images"] == [{"url": "u", "truncated": True}, {"content": "i" * 5}]


def test_absent_or_non_string_fields_are_skipped():
    redactor = PayloadRedactor(ContextConfig(content_truncate_chars=1))
    turn = _tool_turn("web_search", {"content": ["not", "a", "string"], "images": ["oops", 3]})

    redacted, report = redactor.redact_turns([turn])

    assert redacted[0].tool_invocations[0].result == {"content": ["not", "a", "string"], "images": ["oops", 3]}
    assert report.fields_skipped == 1
    assert report.bytes_removed == 0


def test_redaction_is_idempotent():
    redactor = PayloadRedactor(ContextConfig(content_truncate_chars=10, markup_truncate_chars=5))
    turns = [
        _tool_turn("generate_images", {"images": [{"content": "a" * 20, "metadata": "flat", "fileId": "f"}]}),
        _tool_turn("web_search", {"content": "b" * 20, "html_content": "<p>long</p>"}),
        _tool_turn("save_final_page", {"needsUpload": True, "content": "c" * 20}),
        Turn(role=ROLE_USER, content="next"),
    ]

    once, _ = redactor.redact_turns(turns)
    twice, second_report = redactor.redact_turns(once)

    assert twice == once
    assert second_report.bytes_removed == 0


def test_newest_turn_is_never_redacted():
    redactor = PayloadRedactor()
    old = _tool_turn("save_final_page", {"needsUpload": True, "content": "old" * 10}, "call_old")
    newest = _tool_turn("save_final_page", {"needsUpload": True, "content": "new" * 10}, "call_new")

    redacted, report = redactor.redact_history([old, newest])

    assert redacted[0].tool_invocations[0].result == {"needsUpload": True, "contentRemoved": True}
    assert redacted[1] is newest
    assert report.bytes_removed == 30


def test_pending_and_opaque_results_pass_through():
    redactor = PayloadRedactor()
    turn = Turn(
        role=ROLE_ASSISTANT,
        content="",
        tool_invocations=(
            ToolInvocation("c1", "web_search", {"q": "x"}, state=INVOCATION_CALL),
            ToolInvocation("c2", "web_search", {}, "plain text result"),
            ToolInvocation("c3", "web_search", {}, ["a", "b"]),
        ),
    )

    redacted, report = redactor.redact_turns([turn])

    assert redacted[0] == turn
    assert report.opaque_results == 2


def test_classification_variants():
    assert isinstance(classify_result("web_search", {"needsUpload": True}), ArtifactResult)
    assert isinstance(classify_result("deerapi_generate_images", {}), ArtifactResult)
    assert isinstance(classify_result("capture_website_screenshot", {}), ArtifactResult)
    assert isinstance(classify_result("web_search", {"needsUpload": "yes"}), GenericResult)
    assert isinstance(classify_result("unknown_tool", {}), GenericResult)
    assert isinstance(classify_result("web_search", None), OpaqueResult)

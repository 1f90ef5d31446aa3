"""Tests for pidesk.shared.models.content: in-place content block edits."""

from pidesk.shared.models.content import (
    MODEL_REQUEST_FAILED,
    append_to_block,
    convert_assistant_content,
    convert_user_content,
    ensure_index,
    extract_assistant_error,
    set_block,
)
from pidesk.shared.models.message import (
    BlockKind,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
)


class TestEnsureIndex:
    def test_pads_with_empty_text_blocks(self):
        content = []
        ensure_index(content, 2)
        assert content == [TextBlock(), TextBlock(), TextBlock()]

    def test_never_shrinks(self):
        content = [TextBlock("a"), TextBlock("b"), TextBlock("c")]
        ensure_index(content, 0)
        assert len(content) == 3
        assert content[2].text == "c"


class TestSetBlock:
    def test_replaces_wholesale(self):
        content = [TextBlock("old")]
        set_block(content, 0, ThinkingBlock("new"))
        assert content == [ThinkingBlock("new")]

    def test_pads_before_setting(self):
        content = []
        set_block(content, 1, TextBlock("x"))
        assert content == [TextBlock(""), TextBlock("x")]


class TestAppendToBlock:
    def test_mutates_matching_block_in_place(self):
        block = TextBlock("Hel")
        content = [block]
        append_to_block(content, 0, "lo", BlockKind.TEXT)
        assert content[0] is block
        assert block.text == "Hello"

    def test_thinking_in_place(self):
        block = ThinkingBlock("hmm")
        content = [block]
        append_to_block(content, 0, "m", BlockKind.THINKING)
        assert content[0] is block
        assert block.thinking == "hmmm"

    def test_kind_mismatch_replaces_with_seeded_block(self):
        content = [TextBlock("text")]
        append_to_block(content, 0, "idea", BlockKind.THINKING)
        assert content == [ThinkingBlock("idea")]

    def test_absent_index_is_seeded(self):
        content = []
        append_to_block(content, 1, "x", BlockKind.TEXT)
        # The padding slot at 1 is an empty text block, so it is extended
        assert content == [TextBlock(""), TextBlock("x")]

    def test_fifo_order(self):
        content = []
        for fragment in ["a", "b", "c", "d"]:
            append_to_block(content, 0, fragment, BlockKind.TEXT)
        assert content[0].text == "abcd"


class TestConvertAssistantContent:
    def test_string(self):
        assert convert_assistant_content("hi") == [TextBlock("hi")]

    def test_empty_string(self):
        assert convert_assistant_content("") == []

    def test_block_list(self):
        raw = [
            {"type": "thinking", "thinking": "plan"},
            {"type": "text", "text": "answer"},
            {"type": "toolCall", "id": "c1", "name": "read", "arguments": {"path": "a"}},
            {"type": "image", "data": "..."},
            "stray",
        ]
        assert convert_assistant_content(raw) == [
            ThinkingBlock("plan"),
            TextBlock("answer"),
            ToolCallBlock(id="c1", name="read", arguments={"path": "a"}),
        ]

    def test_garbage(self):
        assert convert_assistant_content(None) == []
        assert convert_assistant_content({"type": "text"}) == []


class TestConvertUserContent:
    def test_string(self):
        assert convert_user_content("hello") == "hello"

    def test_parts(self):
        raw = [{"type": "text", "text": "a"}, {"type": "image"}, "b"]
        assert convert_user_content(raw) == "ab"

    def test_none(self):
        assert convert_user_content(None) == ""

    def test_other_is_json(self):
        assert convert_user_content({"k": 1}) == '{"k": 1}'


class TestExtractAssistantError:
    def test_error_message_trimmed(self):
        assert extract_assistant_error({"errorMessage": "  boom  "}) == "boom"

    def test_blank_error_message_ignored(self):
        assert extract_assistant_error({"errorMessage": "   "}) is None

    def test_stop_reason_error(self):
        assert extract_assistant_error({"stopReason": "error"}) == MODEL_REQUEST_FAILED

    def test_no_error(self):
        assert extract_assistant_error({"stopReason": "stop"}) is None

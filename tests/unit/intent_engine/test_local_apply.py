"""Tests for deterministic local transforms."""

from intent_engine.local_apply import (
    REASON_EMPTY_CONTENT,
    REASON_EMPTY_INSTRUCTION,
    REASON_NO_CHANGE,
    REASON_NO_OPERATION,
    LocalOperation,
    add_bullets,
    add_hashtags,
    can_handle_locally,
    detect_operations,
    fix_whitespace,
    get_operation_label,
    local_apply,
    number_lines,
    remove_bullets,
    remove_emoji,
    remove_hashtags,
    to_title_case,
    trim_lines,
)


class TestDetectOperations:
    """Tests for detect_operations."""

    def test_vietnamese_add_bullets(self):
        """'thêm bullet' maps to ADD_BULLETS."""
        assert detect_operations("thêm bullet") == [LocalOperation.ADD_BULLETS]

    def test_english_uppercase(self):
        """English instructions are recognised too."""
        assert detect_operations("make it UPPERCASE") == [LocalOperation.UPPERCASE]

    def test_empty_instruction(self):
        """Empty or blank instructions detect nothing."""
        assert detect_operations("") == []
        assert detect_operations("   ") == []

    def test_unrelated_instruction(self):
        """Free-form rewrites are not local operations."""
        assert detect_operations("viết lại cho hấp dẫn hơn") == []

    def test_order_follows_priority_not_input(self):
        """Composition order comes from the priority table."""
        ops = detect_operations("đánh số dòng và bỏ hashtag")
        assert ops == [LocalOperation.REMOVE_HASHTAGS, LocalOperation.NUMBER_LINES]

    def test_title_case_supersedes_uppercase(self):
        """'viết hoa đầu' also contains 'viết hoa' but means title case only."""
        assert detect_operations("viết hoa đầu mỗi từ") == [LocalOperation.TITLE_CASE]

    def test_remove_bullets_supersedes_add(self):
        """'remove bullet points' does not also add bullets."""
        assert detect_operations("remove bullet points") == [LocalOperation.REMOVE_BULLETS]

    def test_both_spellings_of_xoa(self):
        """Both diacritic placements of 'xóa' are accepted."""
        assert detect_operations("xóa hashtag") == [LocalOperation.REMOVE_HASHTAGS]
        assert detect_operations("xoá hashtag") == [LocalOperation.REMOVE_HASHTAGS]

    def test_can_handle_locally(self):
        """can_handle_locally mirrors detection."""
        assert can_handle_locally("trim lines") is True
        assert can_handle_locally("write a new post about coffee") is False

    def test_operation_label(self):
        """Labels come from the lexicon."""
        assert get_operation_label(LocalOperation.ADD_BULLETS) == "Thêm bullet"


class TestTransforms:
    """Tests for the individual transform functions."""

    def test_fix_whitespace(self):
        """Collapses spaces, trims lines and limits blank runs to one."""
        content = "  hello    world  \n\n\n\nnext   line "
        assert fix_whitespace(content) == "hello world\n\nnext line"

    def test_add_bullets_skips_existing_markers(self):
        """Lines that are already bulleted or numbered are kept."""
        content = "- first\n1. second\nthird"
        assert add_bullets(content) == "- first\n1. second\n• third"

    def test_add_bullets_drops_blank_lines(self):
        assert add_bullets("a\n\nb") == "• a\n• b"

    def test_remove_bullets(self):
        """Strips bullet and number markers."""
        assert remove_bullets("• a\n- b\n2) c") == "a\nb\nc"

    def test_remove_emoji_keeps_line_breaks(self):
        """Emoji removal works per line."""
        assert remove_emoji("🔥 Sale today\n✨ New arrivals") == "Sale today\nNew arrivals"

    def test_title_case(self):
        assert to_title_case("hello WORLD\nfoo bar") == "Hello World\nFoo Bar"

    def test_remove_hashtags(self):
        assert remove_hashtags("Great day #fun #sun\nMore #text here") == "Great day\nMore here"

    def test_add_hashtags_tops_up_to_three(self):
        """Existing hashtags count toward the three."""
        result = add_hashtags("Post #SocialMedia")
        assert result == "Post #SocialMedia\n\n#ContentMarketing #DigitalMarketing"

    def test_add_hashtags_noop_with_three(self):
        content = "x #a #b #c"
        assert add_hashtags(content) == content

    def test_trim_lines(self):
        assert trim_lines("a\n\n  \nb") == "a\nb"

    def test_number_lines_skips_numbered(self):
        """Already-numbered lines keep their number."""
        assert number_lines("first\n2. second\nthird") == "1. first\n2. second\n3. third"


class TestLocalApply:
    """Tests for local_apply."""

    def test_add_bullets(self):
        """Bullets are added to each line."""
        result = local_apply("Item 1\nItem 2", "thêm bullet")
        assert result.ok is True
        assert result.next_content == "• Item 1\n• Item 2"
        assert result.applied_ops == [LocalOperation.ADD_BULLETS]
        assert result.reason == "Đã áp dụng: ADD_BULLETS"

    def test_reapply_is_noop(self):
        """Re-applying to an already bulleted result changes nothing."""
        first = local_apply("Item 1\nItem 2", "thêm bullet")
        second = local_apply(first.next_content, "thêm bullet")
        assert second.ok is False
        assert second.next_content is None
        assert second.reason == REASON_NO_CHANGE
        assert second.reason.startswith("Không có thay đổi")

    def test_empty_content(self):
        assert local_apply("", "thêm bullet").reason == REASON_EMPTY_CONTENT
        assert local_apply("   ", "thêm bullet").reason == REASON_EMPTY_CONTENT

    def test_empty_instruction(self):
        assert local_apply("text", " ").reason == REASON_EMPTY_INSTRUCTION

    def test_no_operation(self):
        result = local_apply("text", "make it funnier")
        assert result.ok is False
        assert result.reason == REASON_NO_OPERATION

    def test_composed_operations(self):
        """Multiple operations run in priority order."""
        result = local_apply("alpha #x\n\nbeta #y", "xóa dòng trống và bỏ hashtag, đánh số")
        assert result.ok is True
        assert result.next_content == "1. alpha\n2. beta"
        assert result.applied_ops == [
            LocalOperation.TRIM_LINES,
            LocalOperation.REMOVE_HASHTAGS,
            LocalOperation.NUMBER_LINES,
        ]

    def test_input_not_mutated(self):
        """The content string passed in is returned untouched on failure."""
        content = "• a\n• b"
        result = local_apply(content, "add bullets")
        assert result.ok is False
        assert content == "• a\n• b"

    def test_to_dict(self):
        data = local_apply("a\nb", "number lines").to_dict()
        assert data["ok"] is True
        assert data["applied_ops"] == ["NUMBER_LINES"]

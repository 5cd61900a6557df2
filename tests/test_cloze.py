import pytest

from cardcadence.cloze import (
    ClozePart,
    ClozeSegment,
    create_cloze_items,
    parse_cloze_for_display,
    parse_cloze_text,
    render_cloze_answer,
    render_cloze_question,
)
from cardcadence.exceptions import CardValidationError
from cardcadence.models import CardType, LearningState

CAPITAL = "{{c1::Paris}} is in {{c2::France}}"


class TestParse:
    def test_two_slots(self):
        result = parse_cloze_text(CAPITAL)
        assert result.cloze_count == 2
        assert result.parts == [
            ClozeSegment(kind="cloze", content="Paris", index=1),
            ClozeSegment(kind="text", content=" is in "),
            ClozeSegment(kind="cloze", content="France", index=2),
        ]

    def test_count_is_highest_slot_not_match_count(self):
        text = "{{c1::a}} {{c1::b}} {{c3::c}}"
        assert parse_cloze_text(text).cloze_count == 3

    def test_hint_captured(self):
        result = parse_cloze_text("The {{c1::mitochondria::organelle}} powers cells")
        assert result.parts[1] == ClozeSegment(
            kind="cloze", content="mitochondria", hint="organelle", index=1
        )

    def test_no_deletions(self):
        result = parse_cloze_text("plain text")
        assert result.cloze_count == 0
        assert result.parts == [ClozeSegment(kind="text", content="plain text")]

    def test_empty_text(self):
        result = parse_cloze_text("")
        assert result.cloze_count == 0
        assert result.parts == []

    @pytest.mark.parametrize(
        "text",
        [
            "{{c1::unterminated",
            "{{cx::not numeric}}",
            "{{c1::has:colon}}",
            "{c1::single braces}",
        ],
    )
    def test_malformed_markup_is_literal_text(self, text):
        result = parse_cloze_text(text)
        assert result.cloze_count == 0
        assert "".join(p.content for p in result.parts) == text

    def test_whitespace_preserved(self):
        text = "  lead {{c1::x}}\n\ttrail  "
        parts = parse_cloze_text(text).parts
        assert parts[0].content == "  lead "
        assert parts[-1].content == "\n\ttrail  "


class TestRender:
    def test_question_hides_only_target(self):
        assert render_cloze_question(CAPITAL, 1) == "[...] is in France"
        assert render_cloze_question(CAPITAL, 2) == "Paris is in [...]"

    def test_question_shows_hint(self):
        text = "{{c1::Paris::city}} is in {{c2::France}}"
        assert render_cloze_question(text, 1) == "[city] is in France"

    def test_same_slot_hidden_together(self):
        text = "{{c1::H}} and {{c1::O}} form {{c2::water}}"
        assert render_cloze_question(text, 1) == "[...] and [...] form water"

    def test_answer_reveals_target_in_bold(self):
        assert render_cloze_answer(CAPITAL, 1) == "**Paris** is in France"
        assert render_cloze_answer(CAPITAL, 2) == "Paris is in **France**"

    def test_display_parts_question(self):
        parts = parse_cloze_for_display("{{c1::Paris::city}} is in {{c2::France}}", 1, False)
        assert parts == [
            ClozePart(kind="blank", content="city", hint="city"),
            ClozePart(kind="text", content=" is in "),
            ClozePart(kind="text", content="France"),
        ]

    def test_display_parts_answer(self):
        parts = parse_cloze_for_display(CAPITAL, 2, True)
        assert parts[-1] == ClozePart(kind="revealed", content="France")
        assert parts[0] == ClozePart(kind="text", content="Paris")

    def test_display_blank_without_hint_uses_placeholder(self):
        parts = parse_cloze_for_display(CAPITAL, 1, False)
        assert parts[0] == ClozePart(kind="blank", content="...")


class TestCreateClozeItems:
    def test_one_item_per_slot(self, config, now):
        items = create_cloze_items("Geo", CAPITAL, "", config, now, tags=["eu"])
        assert [i.cloze_index for i in items] == [1, 2]
        for item in items:
            assert item.card_type == CardType.Cloze
            assert item.front == CAPITAL
            assert item.back == CAPITAL
            assert item.tags == frozenset({"eu"})
            assert item.learning_state == LearningState.New
            assert item.next_review == now
        assert items[0].id != items[1].id

    def test_gaps_in_numbering_still_produce_n_items(self, config, now):
        items = create_cloze_items("Geo", "{{c3::x}}", "extra", config, now)
        assert [i.cloze_index for i in items] == [1, 2, 3]
        assert all(i.back == "extra" for i in items)

    def test_zero_deletions_rejected(self, config, now):
        with pytest.raises(CardValidationError, match="at least one cloze deletion"):
            create_cloze_items("Geo", "no deletions here", "", config, now)

    def test_slot_number_over_cap_rejected(self, config, now):
        with pytest.raises(CardValidationError, match="cannot exceed c100"):
            create_cloze_items("Geo", "{{c101::x}}", "", config, now)

    def test_uses_configured_ease(self, config, now):
        custom = config.with_overrides({"default_ease_factor": 2.0})
        items = create_cloze_items("Geo", CAPITAL, "", custom, now)
        assert all(i.ease_factor == 2.0 for i in items)

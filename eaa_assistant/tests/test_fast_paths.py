"""Tests for messages answered without retrieval."""

import pytest


class TestShortNegation:
    @pytest.mark.parametrize("text", ["no", "No!", "nope", "nah", "нет", "не то", "  NO  "])
    def test_negations(self, text):
        from eaa_assistant.chat.fast_paths import is_short_negation
        assert is_short_negation(text)

    @pytest.mark.parametrize("text", ["not", "no idea at all", "nothing", "November"])
    def test_not_negations(self, text):
        from eaa_assistant.chat.fast_paths import is_short_negation
        assert not is_short_negation(text)


class TestGreeting:
    @pytest.mark.parametrize("text", ["Hi", "hello there!", "Thanks a lot", "thank you", "Привет", "good morning"])
    def test_greetings(self, text):
        from eaa_assistant.chat.fast_paths import is_greeting
        assert is_greeting(text)

    @pytest.mark.parametrize("text", [
        "hi, does the EAA apply to banks?",
        "thanks, and what about mobile apps?",
        "history of the act",
    ])
    def test_questions_are_not_greetings(self, text):
        from eaa_assistant.chat.fast_paths import is_greeting
        assert not is_greeting(text)


class TestReask:
    def test_identical_question(self):
        from eaa_assistant.chat.fast_paths import is_reask
        assert is_reask("What is the EAA?", "what is the EAA")

    def test_high_overlap(self):
        from eaa_assistant.chat.fast_paths import is_reask
        assert is_reask(
            "Which deadlines apply to online shops in Germany",
            "Which deadlines apply to online shops in Germany now",
        )

    def test_different_question(self):
        from eaa_assistant.chat.fast_paths import is_reask
        assert not is_reask("What is the EAA?", "What penalties apply to banks?")

    def test_short_texts_never_match(self):
        from eaa_assistant.chat.fast_paths import is_reask
        assert not is_reask("ok", "ok")
        assert not is_reask(None, "What is the EAA?")


class TestMatchFastPath:
    def test_order_and_kinds(self):
        from eaa_assistant.chat.fast_paths import match_fast_path
        assert match_fast_path("no").kind == "negation"
        assert match_fast_path("hello").kind == "greeting"
        assert match_fast_path("What is the EAA?", "What is the EAA?").kind == "reask"
        assert match_fast_path("What is the EAA?", "Hello") is None

    def test_reask_reply_offers_three_suggestions(self):
        from eaa_assistant.chat.fast_paths import REASK_REPLY
        assert REASK_REPLY.answer.startswith("It looks like you repeated the same question")
        assert len(REASK_REPLY.suggestions) == 3
        assert REASK_REPLY.suggestions_header == "Please add details:"

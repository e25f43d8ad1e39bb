"""
Tests for deriving conversation titles from the first message.
"""

from mission_control.services.conversation_service import generate_title_from_message


def test_short_message_is_used_as_is():
    assert generate_title_from_message("  How do I deploy?  ") == "How do I deploy?"


def test_exactly_sixty_characters_is_kept():
    text = "a" * 60
    assert generate_title_from_message(text) == text


def test_breaks_after_last_sentence_end():
    text = "Help me plan the quarterly roadmap. It needs to include hiring, budget and launch dates."
    assert generate_title_from_message(text) == "Help me plan the quarterly roadmap."


def test_question_mark_is_kept():
    text = "Can you review my pull request today? There are changes to the auth flow and the tests."
    assert generate_title_from_message(text) == "Can you review my pull request today?"


def test_falls_back_to_word_boundary():
    text = "Summarize the meeting notes from yesterday including action items for every team member"
    title = generate_title_from_message(text)
    assert len(title) <= 60
    assert not title.endswith(" ")
    assert text.startswith(title)
    assert text[len(title)] == " "


def test_break_point_must_leave_a_meaningful_title():
    # the only sentence break is too early, so the word boundary wins
    text = "Hi. " + "please explain the difference between threads and processes in detail"
    title = generate_title_from_message(text)
    assert title != "Hi."
    assert len(title) <= 60


def test_truncates_with_ellipsis_without_boundaries():
    text = "x" * 80
    assert generate_title_from_message(text) == "x" * 60 + "..."


def test_empty_message():
    assert generate_title_from_message("") == ""

"""Tests for the text_sanitizer module."""

import pytest
from common import text_sanitizer


@pytest.mark.parametrize(
  "text, expected",
  [
    ("(laughs) Hello there", "[laughs] Hello there"),
    ("(beat) Okay.", "[pause] Okay."),
    ("{tag: Whispers} come here", "[Whispers] come here"),
    ("(crosses to the door) Fine.", "Fine."),
    ("[unknown sound] Hi", "Hi"),
    ("Wait___ what", "Wait [pause] what"),
    ("  lots   of   space  ", "lots of space"),
  ],
)
def test_sanitize_for_dialogue_mode(text, expected):
  assert text_sanitizer.sanitize_for_dialogue_mode(text) == expected


@pytest.mark.parametrize(
  "text, expected",
  [
    ("(angrily) Get out!", "Get out!"),
    ("I'll... tell you", "I'll tell you."),
    ("I was thinking...", "I was thinking."),
    ("...and then", "and then."),
    ("Wait -- what?", "Wait what?"),
    ("I never\u2014 no.", "I never no."),
    ("No!!", "No!"),
    ("Hello", "Hello."),
    ("[laughs]", ""),
    ("(beat)", ""),
    ("--", ""),
  ],
)
def test_sanitize_for_alignment(text, expected):
  assert text_sanitizer.sanitize_for_alignment(text) == expected


def test_is_approved_tag_is_case_insensitive():
  assert text_sanitizer.is_approved_tag("Door Slams")
  assert not text_sanitizer.is_approved_tag("walks away")

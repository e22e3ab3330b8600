from callroom.catalog import ContactChannel, find_package
from callroom.prompts import (
    PACKAGE_PROMPT,
    format_duration,
    format_price,
    get_bot_message,
    page_meta,
    summary_lines,
)
from callroom.session import ChatState
from callroom.states import ChatStep


def test_format_price_uses_brl_style():
    assert format_price(24.9) == "R$ 24,90"
    assert format_price(9.9) == "R$ 9,90"


def test_format_duration():
    assert format_duration(0) == "00:00"
    assert format_duration(75) == "01:15"
    assert format_duration(600) == "10:00"


def test_package_steps_ask_for_minutes():
    assert get_bot_message(ChatState()) == PACKAGE_PROMPT
    assert get_bot_message(ChatState(step=ChatStep.MINUTES)) == PACKAGE_PROMPT


def test_composing_steps_have_no_bubble():
    for step in ChatStep:
        if step.is_composing:
            assert get_bot_message(ChatState(step=step, composing=True)) == ""


def test_contact_bubble_mentions_minutes():
    chat = ChatState(step=ChatStep.CONTACT, package=find_package("p5"))
    assert "5 minutos" in get_bot_message(chat)


def test_summary_lines():
    chat = ChatState(
        step=ChatStep.SUMMARY,
        package=find_package("p10"),
        channel=ContactChannel.EMAIL,
        contact_value=" a@b.com ",
    )
    lines = summary_lines(chat)
    assert "10 minutos" in lines[0]
    assert "R$ 24,90" in lines[0]
    assert lines[1].endswith("a@b.com")
    assert "E-mail" in lines[1]


def test_page_meta():
    meta = page_meta("https://room.example.com/?seconds=600")
    assert meta["canonical"] == "https://room.example.com/?seconds=600"
    assert meta["title"]

from callroom.states import CallPhase, ChatStep


def test_chat_steps_in_forward_order():
    assert [s.value for s in ChatStep] == [
        "intro", "minutes", "minutes_confirmed", "contact_typing", "contact",
        "contact_confirmed", "summary_typing", "summary", "finished",
    ]


def test_composing_steps():
    assert ChatStep.MINUTES_CONFIRMED.is_composing
    assert ChatStep.CONTACT_TYPING.is_composing
    assert ChatStep.CONTACT_CONFIRMED.is_composing
    assert ChatStep.SUMMARY_TYPING.is_composing
    assert not ChatStep.CONTACT.is_composing
    assert not ChatStep.SUMMARY.is_composing


def test_next_follows_order():
    assert ChatStep.MINUTES_CONFIRMED.next() == ChatStep.CONTACT_TYPING
    assert ChatStep.SUMMARY_TYPING.next() == ChatStep.SUMMARY
    assert ChatStep.INTRO.order < ChatStep.FINISHED.order


def test_call_can_start_only_from_idle_or_ended():
    assert CallPhase.IDLE.can_start
    assert CallPhase.ENDED.can_start
    assert not CallPhase.CONNECTING.can_start
    assert not CallPhase.ACTIVE.can_start

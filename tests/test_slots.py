"""
Contact workflow state machine tests.

The transition functions are pure, so these tests drive them directly with
parsed events and assert the resulting state, fields and effects.
"""

from __future__ import annotations

from typing import List, Tuple

from advocado.slots import (
    EMAIL,
    MESSAGE,
    NAME,
    SUBJECT,
    Answering,
    Cancelled,
    CollectedFields,
    CollectingField,
    ConfirmingField,
    Confirmed,
    ContactRequested,
    Declined,
    FieldsSupplied,
    Invalid,
    Question,
    ReadyToSend,
    Rejected,
    Say,
    SendEmail,
    SendFailed,
    Sent,
    SlotState,
    Transition,
    after_send,
    extract_fields,
    is_contact_intent,
    parse_turn,
    transition,
    values_from_tool_arguments,
)


def _said(step: Transition) -> List[str]:
    return [e.message for e in step.effects if isinstance(e, Say)]


def _turn(state: SlotState, fields: CollectedFields, text: str, email_sent: bool = False) -> Transition:
    return transition(state, fields, email_sent, parse_turn(state, text, fields))


def _walk(messages: List[str]) -> Tuple[Transition, List[Transition]]:
    state: SlotState = Answering()
    fields = CollectedFields()
    steps = []
    step = None
    for text in messages:
        step = _turn(state, fields, text)
        steps.append(step)
        state, fields = step.state, step.fields
    assert step is not None
    return step, steps


def test_contact_steve_scenario_collects_fields_in_order():
    """Name and email in one message, then one explicit confirmation per field."""
    final, steps = _walk(
        [
            "I'd like to contact Steve",
            "Jane Doe, jane@example.com",
            "yes",
            "yes",
            "Collaboration",
            "yes",
            "Would love to chat about a project.",
            "yes",
        ]
    )

    start = steps[0]
    assert start.state == CollectingField(NAME)
    assert _said(start) == ["I can help facilitate contact with Steve.", "What's your full name?"]

    assert steps[1].state == ConfirmingField(NAME, "Jane Doe")
    assert steps[1].fields.cached[EMAIL] == "jane@example.com"
    assert _said(steps[1]) == ["I have **Jane Doe** as your full name. Is that correct?"]

    # The cached email is offered for confirmation instead of asked for again.
    assert steps[2].state == CollectingField(EMAIL)
    assert "I have **jane@example.com** as your email address. Is that correct?" in _said(steps[2])

    assert steps[3].state == CollectingField(SUBJECT)
    assert steps[4].state == ConfirmingField(SUBJECT, "Collaboration")
    assert steps[5].state == CollectingField(MESSAGE)
    assert steps[6].state == ConfirmingField(MESSAGE, "Would love to chat about a project.")

    assert final.state == ReadyToSend(0)
    sends = [e for e in final.effects if isinstance(e, SendEmail)]
    assert len(sends) == 1
    assert dict(sends[0].arguments) == {
        "senderName": "Jane Doe",
        "senderEmail": "jane@example.com",
        "subject": "Collaboration",
        "content": "Would love to chat about a project.",
    }

    sent = after_send(final.state, final.fields, True)
    assert sent.state == Sent()
    assert _said(sent) == ["Your message has been sent to Steve. Thanks for reaching out!"]


def test_no_send_effect_before_all_fields_confirmed():
    _, steps = _walk(["contact Steve", "Jane Doe", "yes", "jane@example.com", "yes", "Hello", "yes"])
    for step in steps:
        assert not any(isinstance(e, SendEmail) for e in step.effects)
    assert steps[-1].state == CollectingField(MESSAGE)


def test_out_of_order_values_are_cached_and_confirmed_in_field_order():
    state = CollectingField(NAME)
    step = _turn(state, CollectedFields(), "subject: Hiring")

    assert step.state == CollectingField(NAME)
    assert step.fields.cached[SUBJECT] == "Hiring"
    assert step.fields.committed == (None, None, None, None)
    assert _said(step) == [
        "Thanks, I've noted your subject and will confirm it when we get there.",
        "What's your full name?",
    ]

    step = _turn(step.state, step.fields, "Jane Doe")
    step = _turn(step.state, step.fields, "yes")
    step = _turn(step.state, step.fields, "jane@example.com")
    step = _turn(step.state, step.fields, "yes")

    assert step.state == CollectingField(SUBJECT)
    assert "I have **Hiring** as your subject. Is that correct?" in _said(step)


def test_second_request_after_send_is_declined():
    step = transition(Sent(), CollectedFields(), True, ContactRequested("email steve again"))
    assert step.state == Declined()
    assert not any(isinstance(e, SendEmail) for e in step.effects)

    # email_sent alone is enough, whatever the state.
    step = transition(Answering(), CollectedFields(), True, ContactRequested("contact Steve"))
    assert step.state == Declined()

    again = transition(Declined(), CollectedFields(), True, ContactRequested("contact Steve"))
    assert again.state == Declined()


def test_questions_outside_slot_filling_are_answered():
    for state in (Answering(), Sent(), Declined(), SendFailed()):
        step = transition(state, CollectedFields(), False, Question("What does Steve do?"))
        assert step.state == state
        assert [type(e).__name__ for e in step.effects] == ["AnswerQuestion"]


def test_invalid_email_reprompts_without_advancing():
    fields = CollectedFields().commit(NAME, "Jane Doe")
    step = _turn(CollectingField(EMAIL), fields, "jane@")

    assert step.state == CollectingField(EMAIL)
    assert step.fields.committed[EMAIL] is None
    invalid = [e for e in step.effects if isinstance(e, Invalid)]
    assert len(invalid) == 1
    assert invalid[0].error.field_index == EMAIL
    assert "jane@" in invalid[0].error.message
    assert _said(step) == ["What's your email address?"]


def test_plain_text_for_email_field_is_invalid():
    step = _turn(CollectingField(EMAIL), CollectedFields(), "not an email")
    assert step.state == CollectingField(EMAIL)
    assert any(isinstance(e, Invalid) for e in step.effects)


def test_rejection_with_correction_confirms_new_value():
    step = _turn(ConfirmingField(NAME, "Jane Doe"), CollectedFields(), "no, it's Janet Doe")
    assert step.state == ConfirmingField(NAME, "Janet Doe")


def test_plain_rejection_asks_again():
    step = _turn(ConfirmingField(NAME, "Jane Doe"), CollectedFields(), "no")
    assert step.state == CollectingField(NAME)
    assert _said(step) == ["No problem. What's your full name?"]


def test_values_starting_with_yes_or_no_are_kept_whole():
    fields = CollectedFields().commit(NAME, "Jane Doe").commit(EMAIL, "jane@example.com").commit(SUBJECT, "Hiring")

    step = _turn(CollectingField(MESSAGE), fields, "Yes, I'd like to discuss a PM role with Steve.")
    assert step.state == ConfirmingField(MESSAGE, "Yes, I'd like to discuss a PM role with Steve.")

    step = _turn(CollectingField(MESSAGE), fields, "No rush, but I'd love to chat.")
    assert step.state == ConfirmingField(MESSAGE, "No rush, but I'd love to chat.")

    step = _turn(CollectingField(SUBJECT), CollectedFields(), "Nope")
    assert step.state == CollectingField(SUBJECT)
    assert step.fields.cached[SUBJECT] is None


def test_cached_value_still_accepts_prefixed_replies():
    fields = CollectedFields().commit(NAME, "Jane Doe").cache({EMAIL: "jane@example.com"})

    step = _turn(CollectingField(EMAIL), fields, "no, it's jane.doe@example.com")
    assert step.state == ConfirmingField(EMAIL, "jane.doe@example.com")

    step = _turn(CollectingField(EMAIL), fields, "Yep, that's it")
    assert step.state == CollectingField(SUBJECT)
    assert step.fields.committed[EMAIL] == "jane@example.com"


def test_cancel_discards_collected_fields():
    fields = CollectedFields().commit(NAME, "Jane Doe").cache({EMAIL: "jane@example.com"})
    step = _turn(CollectingField(SUBJECT), fields, "never mind")

    assert step.state == Answering()
    assert step.fields == CollectedFields()
    assert not any(isinstance(e, SendEmail) for e in step.effects)


def test_ready_to_send_rejection_returns_to_answering():
    fields = CollectedFields(committed=("Jane Doe", "jane@example.com", "Hi", "Hello"))
    step = transition(ReadyToSend(1), fields, False, Rejected("no"))
    assert step.state == Answering()
    assert step.fields == CollectedFields()


def test_send_failure_allows_exactly_one_retry():
    fields = CollectedFields(committed=("Jane Doe", "jane@example.com", "Hi", "Hello"))

    first = after_send(ReadyToSend(0), fields, False)
    assert first.state == ReadyToSend(1)
    assert _said(first) == ["Sorry, I couldn't send your message just now. Would you like me to try again?"]

    retry = transition(first.state, first.fields, False, Confirmed("try again"))
    assert [type(e) for e in retry.effects] == [SendEmail]

    second = after_send(retry.state, retry.fields, False)
    assert second.state == SendFailed()

    blocked = transition(SendFailed(), fields, False, ContactRequested("contact Steve"))
    assert blocked.state == SendFailed()
    assert not any(isinstance(e, SendEmail) for e in blocked.effects)


def test_ready_to_send_never_resends_once_sent():
    fields = CollectedFields(committed=("Jane Doe", "jane@example.com", "Hi", "Hello"))
    step = transition(ReadyToSend(0), fields, True, Confirmed())
    assert not any(isinstance(e, SendEmail) for e in step.effects)


def test_parse_turn_classifies_messages():
    assert isinstance(parse_turn(Answering(), "How can I get in touch with Steve?"), ContactRequested)
    assert isinstance(parse_turn(Answering(), "What is Steve's contact info?"), Question)
    assert isinstance(parse_turn(CollectingField(NAME), "cancel"), Cancelled)
    assert isinstance(parse_turn(ConfirmingField(NAME, "Jane"), "Yep"), Confirmed)
    assert isinstance(parse_turn(CollectingField(NAME), "Jane Doe"), FieldsSupplied)


def test_contact_intent_detection():
    assert is_contact_intent("Can I send Steve a message?")
    assert is_contact_intent("I want to reach out")
    assert not is_contact_intent("Where does Steve work?")


def test_extract_fields_keeps_names_intact():
    values, errors = extract_fields("Imogen Stone", NAME)
    assert values == {NAME: "Imogen Stone"}
    assert errors == {}

    values, _ = extract_fields("My name is Jane Doe", NAME)
    assert values[NAME] == "Jane Doe"


def test_labelled_subject_and_message():
    values, errors = extract_fields("subject: Coffee chat\nmessage: Are you free next week?", SUBJECT)
    assert values[SUBJECT] == "Coffee chat"
    assert values[MESSAGE] == "Are you free next week?"
    assert errors == {}


def test_tool_arguments_keep_only_parseable_values():
    values = values_from_tool_arguments(
        {"senderName": "Jane Doe", "senderEmail": "not-an-email", "subject": "Hi", "content": ""}
    )
    assert values == {NAME: "Jane Doe", SUBJECT: "Hi"}

"""
Contact workflow state machine.

The workflow collects four fields (full name, email address, subject, message)
one at a time, each confirmed explicitly, and then sends a single email.

States are small frozen dataclasses; `transition` and `after_send` are pure
functions from (state, fields, event) to (state', fields', effects). The
orchestrator executes the effects and is the only place a send can happen, and
only for a `SendEmail` effect. `SendEmail` is produced only when all four
fields are committed and `email_sent` is false.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional, Tuple, Union

from .errors import ValidationError

NAME, EMAIL, SUBJECT, MESSAGE = range(4)
FIELD_LABELS = ("full name", "email address", "subject", "message")
# send_email argument for each field index.
FIELD_ARGUMENTS = ("senderName", "senderEmail", "subject", "content")

MAX_SEND_ATTEMPTS = 2


# -- states ------------------------------------------------------------------


@dataclass(frozen=True)
class Answering:
    pass


@dataclass(frozen=True)
class CollectingField:
    index: int


@dataclass(frozen=True)
class ConfirmingField:
    index: int
    value: str


@dataclass(frozen=True)
class ReadyToSend:
    attempts: int = 0


@dataclass(frozen=True)
class Sent:
    pass


@dataclass(frozen=True)
class Declined:
    pass


@dataclass(frozen=True)
class SendFailed:
    pass


SlotState = Union[Answering, CollectingField, ConfirmingField, ReadyToSend, Sent, Declined, SendFailed]
SLOT_FILLING = (CollectingField, ConfirmingField, ReadyToSend)


def describe(state: SlotState) -> Dict[str, object]:
    out: Dict[str, object] = {"name": type(state).__name__}
    if isinstance(state, (CollectingField, ConfirmingField)):
        out["field"] = FIELD_LABELS[state.index]
        out["index"] = state.index
    if isinstance(state, ConfirmingField):
        out["value"] = state.value
    if isinstance(state, ReadyToSend):
        out["attempts"] = state.attempts
    return out


# -- collected fields --------------------------------------------------------

_EMPTY = (None, None, None, None)


@dataclass(frozen=True)
class CollectedFields:
    """Committed (confirmed) values and cached (extracted, unconfirmed) values."""

    committed: Tuple[Optional[str], ...] = _EMPTY
    cached: Tuple[Optional[str], ...] = _EMPTY

    def commit(self, index: int, value: str) -> "CollectedFields":
        committed = list(self.committed)
        committed[index] = value
        return replace(self, committed=tuple(committed)).discard(index)

    def discard(self, index: int) -> "CollectedFields":
        cached = list(self.cached)
        cached[index] = None
        return replace(self, cached=tuple(cached))

    def cache(self, values: Mapping[int, str]) -> "CollectedFields":
        """Cache values for fields that are not committed yet."""
        cached = list(self.cached)
        for index, value in values.items():
            if self.committed[index] is None:
                cached[index] = value
        return replace(self, cached=tuple(cached))

    def next_missing(self) -> Optional[int]:
        for index, value in enumerate(self.committed):
            if value is None:
                return index
        return None

    @property
    def complete(self) -> bool:
        return all(value is not None for value in self.committed)

    def as_arguments(self) -> Dict[str, str]:
        return {FIELD_ARGUMENTS[i]: value for i, value in enumerate(self.committed) if value is not None}


# -- events ------------------------------------------------------------------


@dataclass(frozen=True)
class Question:
    text: str


@dataclass(frozen=True)
class ContactRequested:
    text: str = ""
    values: Mapping[int, str] = field(default_factory=dict)


@dataclass(frozen=True)
class FieldsSupplied:
    text: str
    values: Mapping[int, str] = field(default_factory=dict)
    errors: Mapping[int, ValidationError] = field(default_factory=dict)


@dataclass(frozen=True)
class Confirmed:
    text: str = "yes"


@dataclass(frozen=True)
class Rejected:
    text: str = "no"
    values: Mapping[int, str] = field(default_factory=dict)
    errors: Mapping[int, ValidationError] = field(default_factory=dict)


@dataclass(frozen=True)
class Cancelled:
    text: str = "cancel"


Event = Union[Question, ContactRequested, FieldsSupplied, Confirmed, Rejected, Cancelled]


# -- effects -----------------------------------------------------------------


@dataclass(frozen=True)
class Say:
    message: str


@dataclass(frozen=True)
class AnswerQuestion:
    text: str


@dataclass(frozen=True)
class SendEmail:
    arguments: Mapping[str, str]


@dataclass(frozen=True)
class Invalid:
    error: ValidationError


Effect = Union[Say, AnswerQuestion, SendEmail, Invalid]


@dataclass(frozen=True)
class Transition:
    state: SlotState
    fields: CollectedFields
    effects: Tuple[Effect, ...] = ()


# -- replies -----------------------------------------------------------------

INTRO = "I can help facilitate contact with {subject}."
ASK = (
    "What's your full name?",
    "What's your email address?",
    "What should the subject of the email be?",
    "What message would you like to send to {subject}?",
)
CONFIRM_VALUE = "I have **{value}** as your {label}. Is that correct?"
NOTED = "Thanks, I've noted your {labels} and will confirm it when we get there."
ACK = "Got it."
RETRY_ASK = "No problem. {ask}"
DECLINE = (
    "I've already sent a message to {subject} in this conversation. "
    "I can only send one email per conversation, but I'm happy to keep answering questions."
)
CANCELLED = "Okay, I won't send anything. Let me know if there's anything else you'd like to know about {subject}."
SENT = "Your message has been sent to {subject}. Thanks for reaching out!"
SEND_FAILED_RETRY = "Sorry, I couldn't send your message just now. Would you like me to try again?"
SEND_FAILED_FINAL = (
    "Sorry, I still couldn't send your message. Please try reaching {subject} directly through the contact "
    "details on the website."
)
SEND_UNAVAILABLE = (
    "I wasn't able to send a message in this conversation. Please try reaching {subject} directly through the "
    "contact details on the website."
)
READY_ASK = "Would you like me to try sending your message again?"


def _ask(index: int, subject: str) -> str:
    return ASK[index].format(subject=subject)


def _prompt_for(index: int, fields: CollectedFields, subject: str) -> str:
    cached = fields.cached[index]
    if cached is not None:
        return CONFIRM_VALUE.format(value=cached, label=FIELD_LABELS[index])
    return _ask(index, subject)


def _confirm_prompt(index: int, value: str) -> str:
    return CONFIRM_VALUE.format(value=value, label=FIELD_LABELS[index])


def _noted(values: Mapping[int, str]) -> Optional[str]:
    if not values:
        return None
    labels = " and ".join(FIELD_LABELS[i] for i in sorted(values))
    return NOTED.format(labels=labels)


# -- transitions -------------------------------------------------------------


def _advance(fields: CollectedFields, subject: str, lead: Tuple[Effect, ...] = ()) -> Transition:
    index = fields.next_missing()
    if index is None:
        return Transition(ReadyToSend(0), fields, lead + (SendEmail(fields.as_arguments()),))
    return Transition(CollectingField(index), fields, lead + (Say(_prompt_for(index, fields, subject)),))


def _on_contact(
    state: SlotState,
    fields: CollectedFields,
    email_sent: bool,
    event: ContactRequested,
    subject: str,
) -> Transition:
    if email_sent or isinstance(state, (Sent, Declined)):
        return Transition(Declined(), fields, (Say(DECLINE.format(subject=subject)),))
    if isinstance(state, SendFailed):
        return Transition(state, fields, (Say(SEND_UNAVAILABLE.format(subject=subject)),))
    if isinstance(state, CollectingField):
        return Transition(state, fields.cache(event.values), (Say(_prompt_for(state.index, fields, subject)),))
    if isinstance(state, ConfirmingField):
        return Transition(state, fields, (Say(_confirm_prompt(state.index, state.value)),))
    if isinstance(state, ReadyToSend):
        return Transition(state, fields, (Say(READY_ASK),))

    fresh = CollectedFields().cache(event.values)
    return Transition(
        CollectingField(NAME),
        fresh,
        (Say(INTRO.format(subject=subject)), Say(_prompt_for(NAME, fresh, subject))),
    )


def _supply(
    index: int,
    fields: CollectedFields,
    values: Mapping[int, str],
    errors: Mapping[int, ValidationError],
    subject: str,
    *,
    fallback: SlotState,
    fallback_prompt: str,
) -> Transition:
    """Shared handling of new values offered for field `index`."""
    others = {i: v for i, v in values.items() if i != index and fields.committed[i] is None}
    fields = fields.cache(others)
    if index in values:
        value = values[index]
        return Transition(ConfirmingField(index, value), fields.discard(index), (Say(_confirm_prompt(index, value)),))
    if index in errors:
        return Transition(
            CollectingField(index),
            fields.discard(index),
            (Invalid(errors[index]), Say(_ask(index, subject))),
        )
    effects: Tuple[Effect, ...] = ()
    noted = _noted(others)
    if noted:
        effects += (Say(noted),)
    return Transition(fallback, fields, effects + (Say(fallback_prompt),))


def _collecting(state: CollectingField, fields: CollectedFields, event: Event, subject: str) -> Transition:
    i = state.index
    if isinstance(event, Confirmed):
        cached = fields.cached[i]
        if cached is None:
            return Transition(state, fields, (Say(_ask(i, subject)),))
        return _advance(fields.commit(i, cached), subject, (Say(ACK),))
    if isinstance(event, Rejected):
        return _supply(
            i,
            fields.discard(i),
            event.values,
            event.errors,
            subject,
            fallback=state,
            fallback_prompt=RETRY_ASK.format(ask=_ask(i, subject)),
        )
    if isinstance(event, FieldsSupplied):
        return _supply(
            i,
            fields,
            event.values,
            event.errors,
            subject,
            fallback=state,
            fallback_prompt=_prompt_for(i, fields, subject),
        )
    return Transition(state, fields, (Say(_prompt_for(i, fields, subject)),))


def _confirming(state: ConfirmingField, fields: CollectedFields, event: Event, subject: str) -> Transition:
    i = state.index
    if isinstance(event, Confirmed):
        return _advance(fields.commit(i, state.value), subject, (Say(ACK),))
    if isinstance(event, Rejected):
        return _supply(
            i,
            fields.discard(i),
            event.values,
            event.errors,
            subject,
            fallback=CollectingField(i),
            fallback_prompt=RETRY_ASK.format(ask=_ask(i, subject)),
        )
    if isinstance(event, FieldsSupplied):
        return _supply(
            i,
            fields,
            event.values,
            event.errors,
            subject,
            fallback=state,
            fallback_prompt=_confirm_prompt(i, state.value),
        )
    return Transition(state, fields, (Say(_confirm_prompt(i, state.value)),))


def _ready(state: ReadyToSend, fields: CollectedFields, email_sent: bool, event: Event, subject: str) -> Transition:
    if isinstance(event, Confirmed) and fields.complete and not email_sent:
        return Transition(state, fields, (SendEmail(fields.as_arguments()),))
    if isinstance(event, Rejected):
        return Transition(Answering(), CollectedFields(), (Say(CANCELLED.format(subject=subject)),))
    return Transition(state, fields, (Say(READY_ASK),))


def transition(
    state: SlotState,
    fields: CollectedFields,
    email_sent: bool,
    event: Event,
    *,
    subject: str = "Steve",
) -> Transition:
    """Compute the next state, fields and effects for one parsed user turn."""
    if isinstance(event, ContactRequested):
        return _on_contact(state, fields, email_sent, event, subject)
    if isinstance(state, SLOT_FILLING) and isinstance(event, Cancelled):
        return Transition(Answering(), CollectedFields(), (Say(CANCELLED.format(subject=subject)),))
    if isinstance(state, CollectingField):
        return _collecting(state, fields, event, subject)
    if isinstance(state, ConfirmingField):
        return _confirming(state, fields, event, subject)
    if isinstance(state, ReadyToSend):
        return _ready(state, fields, email_sent, event, subject)
    return Transition(state, fields, (AnswerQuestion(event.text),))


def after_send(state: ReadyToSend, fields: CollectedFields, ok: bool, *, subject: str = "Steve") -> Transition:
    """Resolve a send attempt made from ReadyToSend."""
    if ok:
        return Transition(Sent(), fields, (Say(SENT.format(subject=subject)),))
    attempts = state.attempts + 1
    if attempts < MAX_SEND_ATTEMPTS:
        return Transition(ReadyToSend(attempts), fields, (Say(SEND_FAILED_RETRY),))
    return Transition(SendFailed(), fields, (Say(SEND_FAILED_FINAL.format(subject=subject)),))


# -- parsing -----------------------------------------------------------------

_CONTACT_RE = re.compile(
    r"\b(contact(?!\s+(?:info|information|details))|get in touch|reach out|reach (him|steve)|e-?mail (him|steve)|"
    r"send (him |steve )?(an? )?(e-?mail|message|note)|message (him|steve)|leave (him )?a message)\b",
    re.IGNORECASE,
)
_EMAIL_CANDIDATE_RE = re.compile(r"[^\s,;<>()\"']*@[^\s,;<>()\"']*")
_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}$")
_NAME_RE = re.compile(r"^[^\W\d_]+(?:[ .'-]+[^\W\d_]+)*\.?$")
_NAME_PREFIX_RE = re.compile(
    r"^(?:(?:my name is|my name's|i am|i'm|this is|it's|it is)\b|name\s*[:=-])\s*",
    re.IGNORECASE,
)
_LABELLED_RE = (
    (SUBJECT, re.compile(r"^\s*subject\s*[:=-]\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE)),
    (MESSAGE, re.compile(r"^\s*(?:message|content)\s*[:=-]\s*(.+)\Z", re.IGNORECASE | re.MULTILINE | re.DOTALL)),
)
_REJECT_PREFIX_RE = re.compile(
    r"^\s*(no|nope|nah|wrong|incorrect|not quite|that's wrong|that is wrong)\b[\s,.!:-]*"
    r"(actually\s*|it's\s*|it is\s*|use\s*|should be\s*)*",
    re.IGNORECASE,
)

_CONFIRM_WORDS = frozenset(
    {
        "yes", "y", "yep", "yeah", "yup", "correct", "confirm", "confirmed", "right", "sure",
        "ok", "okay", "that's right", "thats right", "that's correct", "looks good", "yes please",
        "send it", "go ahead", "please do", "try again", "retry", "yes it is", "it is",
    }
)
_CONFIRM_LEADS = frozenset({"yes", "yep", "yeah", "yup", "correct", "confirmed"})
_BARE_REJECTS = frozenset({"no", "nope", "nah", "no thanks", "wrong", "incorrect", "not quite"})
_CANCEL_WORDS = frozenset(
    {"cancel", "cancel that", "stop", "never mind", "nevermind", "forget it", "abort", "don't send it", "dont send it"}
)


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip().lower()).strip(" .!?")


def is_contact_intent(text: str) -> bool:
    return bool(_CONTACT_RE.search(text or ""))


def _is_confirm(norm: str) -> bool:
    if norm in _CONFIRM_WORDS:
        return True
    first, _, rest = norm.partition(" ")
    return first.rstrip(",") in _CONFIRM_LEADS and "@" not in rest


def _is_reject(norm: str) -> bool:
    return bool(_REJECT_PREFIX_RE.match(norm))


def _is_cancel(norm: str) -> bool:
    return norm in _CANCEL_WORDS or norm.startswith("cancel ")


def _clean_name(text: str) -> Optional[str]:
    for segment in re.split(r"[,;\n]", text):
        candidate = _NAME_PREFIX_RE.sub("", segment.strip()).strip(" .!?:")
        if candidate and len(candidate) <= 100 and _NAME_RE.match(candidate):
            return candidate
    return None


def extract_fields(
    text: str,
    expected: Optional[int],
) -> Tuple[Dict[int, str], Dict[int, ValidationError]]:
    """
    Pull every field value that parses out of one user message.

    Email addresses and `subject:` / `message:` labels are recognised anywhere;
    free text is taken as the value of the `expected` field.
    """
    values: Dict[int, str] = {}
    errors: Dict[int, ValidationError] = {}
    remaining = text

    for index, pattern in _LABELLED_RE:
        match = pattern.search(remaining)
        if match:
            values[index] = match.group(1).strip()
            remaining = remaining[: match.start()] + remaining[match.end():]
    free_text = remaining

    for candidate in _EMAIL_CANDIDATE_RE.findall(remaining):
        address = candidate.strip(".")
        if EMAIL in values:
            break
        if _EMAIL_RE.match(address):
            values[EMAIL] = address
            errors.pop(EMAIL, None)
        else:
            errors[EMAIL] = ValidationError(f"'{address}' doesn't look like a valid email address.", EMAIL)
    remaining = _EMAIL_CANDIDATE_RE.sub(" ", remaining)

    if expected == NAME and NAME not in values:
        name = _clean_name(remaining)
        if name:
            values[NAME] = name
        elif not values and not errors:
            errors[NAME] = ValidationError("I didn't catch a name there.", NAME)
    elif expected == EMAIL and EMAIL not in values and EMAIL not in errors:
        errors[EMAIL] = ValidationError("That doesn't look like an email address.", EMAIL)
    elif expected in (SUBJECT, MESSAGE) and expected not in values:
        body = free_text.strip()
        if body:
            values[expected] = body
        else:
            errors[expected] = ValidationError(f"The {FIELD_LABELS[expected]} can't be empty.", expected)

    return values, errors


def parse_turn(state: SlotState, text: str, fields: Optional[CollectedFields] = None) -> Event:
    """
    Classify one user message in the context of the current state.

    While a field is being asked for with no cached value to confirm, only a
    bare yes/no counts as a reply; anything longer is the field value itself.
    """
    norm = _normalize(text)

    if isinstance(state, SLOT_FILLING):
        if _is_cancel(norm):
            return Cancelled(text)
        if isinstance(state, ReadyToSend):
            if _is_confirm(norm):
                return Confirmed(text)
            if _is_reject(norm):
                return Rejected(text)
            return FieldsSupplied(text)
        if isinstance(state, CollectingField) and (fields is None or fields.cached[state.index] is None):
            if norm in _CONFIRM_WORDS:
                return Confirmed(text)
            if norm in _BARE_REJECTS:
                return Rejected(text)
            values, errors = extract_fields(text, state.index)
            return FieldsSupplied(text, values, errors)
        if _is_confirm(norm):
            return Confirmed(text)
        if _is_reject(norm):
            remainder = _REJECT_PREFIX_RE.sub("", text.strip(), count=1).strip()
            if not remainder:
                return Rejected(text)
            values, errors = extract_fields(remainder, state.index)
            return Rejected(text, values, errors)
        values, errors = extract_fields(text, state.index)
        return FieldsSupplied(text, values, errors)

    if is_contact_intent(text):
        values, _errors = extract_fields(text, None)
        return ContactRequested(text, values)
    return Question(text)


def values_from_tool_arguments(arguments: Mapping[str, object]) -> Dict[int, str]:
    """Map send_email arguments proposed by the language model onto field values that parse."""
    values: Dict[int, str] = {}
    for index, key in enumerate(FIELD_ARGUMENTS):
        raw = arguments.get(key)
        if not isinstance(raw, str) or not raw.strip():
            continue
        value = raw.strip()
        if index == NAME:
            name = _clean_name(value)
            if name:
                values[NAME] = name
        elif index == EMAIL:
            if _EMAIL_RE.match(value):
                values[EMAIL] = value
        else:
            values[index] = value
    return values

"""Call-control markup (TwiML) for every point in the payment flow.

Each response is one of:

  * prompts + a ``<Gather>`` whose ``action`` is the next callback address
    (the full CallContext encoded in its query string), followed by a
    fallback that hands the caller to a representative when the gather
    times out;
  * prompts + a ``<Redirect>`` (processing hop, escalation);
  * prompts + ``<Hangup>`` (payment confirmed, nobody to connect to).

Markup is built with ElementTree, so caller-supplied text (customer and
store names) is escaped for XML on serialization.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from xml.etree.ElementTree import Element, SubElement, tostring

from phonepay.ivr.params import callback_url, connect_url
from phonepay.ivr.transitions import Reason, Transition, unavailable
from phonepay.models.call_context import CallContext, Step, Terminal


@dataclass(frozen=True)
class GatherSpec:
    num_digits: int
    timeout: int
    finish_on_key: str = ""


GATHERS: dict[Step, GatherSpec] = {
    Step.SELECT_AMOUNT: GatherSpec(num_digits=1, timeout=10),
    Step.CUSTOM_AMOUNT: GatherSpec(num_digits=10, timeout=15, finish_on_key="#"),
    Step.ENTER_CARD: GatherSpec(num_digits=19, timeout=30, finish_on_key="#"),
    Step.ENTER_EXPIRY: GatherSpec(num_digits=4, timeout=15, finish_on_key="#"),
    Step.ENTER_CVV: GatherSpec(num_digits=4, timeout=15, finish_on_key="#"),
    Step.ENTER_ZIP: GatherSpec(num_digits=5, timeout=15, finish_on_key="#"),
    Step.RETRY: GatherSpec(num_digits=1, timeout=10),
}

# Spoken inside the <Gather>; repeated verbatim on every re-prompt.
INSTRUCTIONS: dict[Step, tuple[str, ...]] = {
    Step.SELECT_AMOUNT: (
        "To pay the full amount, press 1.",
        "To enter a different amount, press 2.",
        "To speak with a representative, press 9.",
    ),
    Step.CUSTOM_AMOUNT: (
        "Please enter the amount you wish to pay in cents, followed by the pound key.",
        "For example, for 25 dollars, enter 2 5 0 0, then press pound.",
    ),
    Step.ENTER_CARD: (
        "Please enter your card number, followed by the pound key.",
    ),
    Step.ENTER_EXPIRY: (
        "Please enter the expiration date as 4 digits. Month then year. "
        "For example, 0 3 2 6 for March 2026. Then press pound.",
    ),
    Step.ENTER_CVV: (
        "Please enter the 3 or 4 digit security code from the back of your card, "
        "followed by pound.",
    ),
    Step.ENTER_ZIP: (
        "Please enter your 5 digit billing zip code, followed by pound.",
    ),
    Step.RETRY: (
        "To try a different card, press 1.",
        "To speak with a representative, press 2.",
    ),
}

INVALID_ENTRY: dict[Step, str] = {
    Step.SELECT_AMOUNT: "Invalid selection.",
    Step.CUSTOM_AMOUNT: "Invalid amount. Please try again.",
    Step.ENTER_CARD: "The card number you entered appears to be invalid. Please try again.",
    Step.ENTER_EXPIRY: "Invalid expiration date. Please try again.",
    Step.ENTER_CVV: "Invalid security code. Please try again.",
    Step.ENTER_ZIP: "Invalid zip code. Please try again.",
    Step.RETRY: "Invalid selection.",
}

# Acknowledgement of the field collected by the previous step.
RECEIVED: dict[Step, str] = {
    Step.ENTER_EXPIRY: "Card number received.",
    Step.ENTER_CVV: "Expiration date received.",
    Step.ENTER_ZIP: "Security code received.",
}

NO_INPUT = {
    Step.SELECT_AMOUNT: "We didn't receive your selection.",
    Step.RETRY: "We didn't receive your selection.",
}

ESCALATION_NOTICE: dict[Reason, str] = {
    Reason.NO_ACCOUNT: "We could not find your account.",
    Reason.NOTHING_OWED: (
        "Your current balance is zero dollars. You have no outstanding payments."
    ),
    Reason.BALANCE_CHANGED: (
        "Your balance has changed during this call, so your card was not charged."
    ),
    Reason.NO_INPUT: "We didn't receive your selection.",
    Reason.RETRIES_EXHAUSTED: "We're sorry, we were unable to process your payment.",
    Reason.FAULT: "Sorry, there was an error processing your request.",
}

# Spoken before hanging up.
FAREWELL: dict[Reason, str] = {
    Reason.UNAVAILABLE: (
        "We're sorry, we are currently unavailable. "
        "Please try again later. Goodbye."
    ),
}


# ── Spoken formats ────────────────────────────────────────────────


def amount_phrase(cents: int) -> str:
    """4217 -> '42 dollars and 17 cents'; 2500 -> '25 dollars'."""
    dollars, rest = divmod(max(0, cents), 100)
    text = f"{dollars} dollar" + ("" if dollars == 1 else "s")
    if rest:
        text += f" and {rest} cent" + ("" if rest == 1 else "s")
    return text


def confirmation_number(transaction_id: str) -> str:
    return transaction_id[-8:]


def spell_out(value: str) -> str:
    """Read a reference one character at a time: 'A1B2' -> 'A 1 B 2'."""
    return " ".join(value)


# ── Markup builder ────────────────────────────────────────────────


class TwimlResponse:
    """Thin ElementTree wrapper for a ``<Response>`` document."""

    def __init__(self, voice: str = "man", language: str = "en-US") -> None:
        self._root = Element("Response")
        self._voice = voice
        self._language = language

    def say(self, text: str, parent: Optional[Element] = None) -> "TwimlResponse":
        el = SubElement(parent if parent is not None else self._root, "Say")
        el.set("voice", self._voice)
        el.set("language", self._language)
        el.text = text
        return self

    def pause(self, length: int = 1) -> "TwimlResponse":
        SubElement(self._root, "Pause").set("length", str(length))
        return self

    def gather(self, action: str, spec: GatherSpec) -> Element:
        el = SubElement(self._root, "Gather")
        el.set("input", "dtmf")
        el.set("numDigits", str(spec.num_digits))
        el.set("action", action)
        el.set("method", "POST")
        el.set("timeout", str(spec.timeout))
        if spec.finish_on_key:
            el.set("finishOnKey", spec.finish_on_key)
        return el

    def redirect(self, url: str) -> "TwimlResponse":
        el = SubElement(self._root, "Redirect")
        el.set("method", "POST")
        el.text = url
        return self

    def dial(self, number: str, caller_id: str = "", timeout: int = 30) -> "TwimlResponse":
        el = SubElement(self._root, "Dial")
        if caller_id:
            el.set("callerId", caller_id)
        el.set("timeout", str(timeout))
        SubElement(el, "Number").text = number
        return self

    def hangup(self) -> "TwimlResponse":
        SubElement(self._root, "Hangup")
        return self

    def to_xml(self) -> str:
        return tostring(self._root, encoding="unicode", xml_declaration=True)


# ── Renderers ─────────────────────────────────────────────────────


def render(
    transition: Transition,
    base_url: str,
    voice: str = "man",
    language: str = "en-US",
) -> str:
    """Markup for the step or terminal a transition lands on."""
    out = TwimlResponse(voice, language)
    ctx = transition.context
    target = transition.target

    if target is Terminal.PAYMENT_CONFIRMED:
        _confirmation(out, transition)
    elif target is Terminal.CONNECT_HUMAN:
        notice = ESCALATION_NOTICE.get(transition.reason)
        if notice:
            out.say(notice)
        out.redirect(connect_url(base_url, ctx))
    elif target is Terminal.HANGUP:
        out.say(FAREWELL.get(transition.reason, "Thank you for calling. Goodbye."))
        out.hangup()
    elif target is Step.PROCESS_PAYMENT:
        out.say("Please wait while we process your payment.")
        out.pause(2)
        out.redirect(callback_url(base_url, ctx))
    else:
        _prompt(out, transition, base_url)

    return out.to_xml()


def _prompt(out: TwimlResponse, transition: Transition, base_url: str) -> None:
    ctx = transition.context
    step = transition.target

    if transition.reprompt:
        out.say(INVALID_ENTRY[step])
    elif step in RECEIVED:
        out.say(RECEIVED[step])

    if step is Step.SELECT_AMOUNT and transition.balance_cents is not None:
        greeting = f"Your current balance is {amount_phrase(transition.balance_cents)}."
        if ctx.customer_name:
            greeting = f"Hello {ctx.customer_name}. {greeting}"
        out.say(greeting)
        out.pause(1)
    elif step is Step.ENTER_CARD and ctx.amount_cents is not None:
        if transition.reason is Reason.AMOUNT_ACCEPTED:
            out.say(f"You entered {amount_phrase(ctx.amount_cents)}.")
        out.say(f"You are about to pay {amount_phrase(ctx.amount_cents)}.")
    elif step is Step.RETRY:
        if transition.reason is Reason.DECLINED:
            out.say("We're sorry, your card was declined.")
            out.pause(1)
        elif transition.reason is Reason.GATEWAY_ERROR:
            out.say("We encountered an error processing your payment.")
            out.pause(1)

    gather = out.gather(callback_url(base_url, ctx), GATHERS[step])
    for line in INSTRUCTIONS[step]:
        out.say(line, parent=gather)

    out.say(NO_INPUT.get(step, "We didn't receive your entry."))
    out.redirect(connect_url(base_url, ctx))


def _confirmation(out: TwimlResponse, transition: Transition) -> None:
    ctx = transition.context
    spoken = spell_out(confirmation_number(transition.transaction_id))
    out.say(f"Your payment of {amount_phrase(ctx.amount_cents or 0)} has been approved!")
    out.pause(1)
    out.say(f"Your confirmation number is {spoken}.")
    out.pause(1)
    out.say(f"I repeat, {spoken}.")
    out.pause(1)
    if transition.balance_cents is not None:
        out.say(f"Your new balance is {amount_phrase(transition.balance_cents)}.")
        out.pause(1)
    out.say("Thank you for your payment. Goodbye!")
    out.hangup()


def render_connect(
    ctx: CallContext,
    forward_number: str,
    voice: str = "man",
    language: str = "en-US",
) -> str:
    """Human-escalation entry point: dial the store, or apologise and hang up."""
    if not forward_number:
        return render(unavailable(ctx), "", voice, language)

    out = TwimlResponse(voice, language)
    out.say("Please hold while we connect you.")
    out.dial(forward_number, caller_id=ctx.caller_number)
    out.say("The call was not answered. Goodbye.")
    return out.to_xml()


def render_fault(
    base_url: str,
    ctx: Optional[CallContext] = None,
    voice: str = "man",
    language: str = "en-US",
) -> str:
    """Generic 'please hold' directive for unexpected failures."""
    out = TwimlResponse(voice, language)
    out.say(
        "Sorry, there was an error processing your request. "
        "Please hold for a representative."
    )
    out.redirect(connect_url(base_url, ctx or CallContext()))
    return out.to_xml()

"""Payment-flow state transition table.

Pure functions from (context, input) to the next step.  Nothing in this
module performs I/O: balances, charge results and the retry bound are
passed in by the caller (``phonepay.flow``), which does the lookups and
side effects and then asks here where to go.

  check_balance    begin()    entry: look up the account, announce balance
  select_amount    advance()  1 = pay in full, 2 = other amount, 9 = human
  custom_amount    advance()  amount in cents + '#'
  enter_card       advance()  13-19 digit card number + '#'
  enter_expiry     advance()  MMYY
  enter_cvv        advance()  3 or 4 digits
  enter_zip        advance()  5 digits
  process_payment  precheck() / settle()
  retry            advance()  1 = new card, 2 = human

Every rejected entry returns a re-prompt of the same step with the context
unchanged.  Every advance carries the whole context forward.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from phonepay.ivr import digits
from phonepay.models.call_context import CallContext, Step, Terminal
from phonepay.models.ledger import Account
from phonepay.payments.base import Approved, ChargeResult, Declined


class Reason(str, Enum):
    """Why a transition happened; selects the wording of the response."""

    NONE = "none"
    INVALID_ENTRY = "invalid_entry"
    AMOUNT_ACCEPTED = "amount_accepted"
    NO_ACCOUNT = "no_account"
    NOTHING_OWED = "nothing_owed"
    BALANCE_CHANGED = "balance_changed"
    CALLER_REQUEST = "caller_request"
    NO_INPUT = "no_input"
    DECLINED = "declined"
    GATEWAY_ERROR = "gateway_error"
    RETRIES_EXHAUSTED = "retries_exhausted"
    FAULT = "fault"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Transition:
    """Result of one step: where to go and what to carry there."""

    target: Union[Step, Terminal]
    context: CallContext
    reason: Reason = Reason.NONE
    balance_cents: Optional[int] = None
    transaction_id: str = ""

    @property
    def reprompt(self) -> bool:
        return self.reason is Reason.INVALID_ENTRY

    @property
    def is_terminal(self) -> bool:
        return isinstance(self.target, Terminal)


def _go(
    ctx: CallContext,
    step: Step,
    reason: Reason = Reason.NONE,
    balance_cents: Optional[int] = None,
    **changes,
) -> Transition:
    return Transition(
        target=step,
        context=ctx.at(step, **changes),
        reason=reason,
        balance_cents=balance_cents,
    )


def _stay(ctx: CallContext, balance_cents: Optional[int] = None) -> Transition:
    return Transition(
        target=ctx.step,
        context=ctx,
        reason=Reason.INVALID_ENTRY,
        balance_cents=balance_cents,
    )


def _escalate(ctx: CallContext, reason: Reason) -> Transition:
    return Transition(target=Terminal.CONNECT_HUMAN, context=ctx, reason=reason)


def escalate(ctx: CallContext, reason: Reason = Reason.FAULT) -> Transition:
    """Hand the caller to a representative from any point in the flow."""
    return _escalate(ctx, reason)


def unavailable(ctx: CallContext) -> Transition:
    """Nobody to hand the caller to: apologise and end the call."""
    return Transition(target=Terminal.HANGUP, context=ctx, reason=Reason.UNAVAILABLE)


# ── Entry ─────────────────────────────────────────────────────────


def begin(ctx: CallContext, account: Optional[Account]) -> Transition:
    """Entry step: decide whether there is anything to collect."""
    if account is None:
        return _escalate(ctx, Reason.NO_ACCOUNT)
    if account.balance_cents <= 0:
        return _escalate(ctx, Reason.NOTHING_OWED)

    return _go(
        ctx,
        Step.SELECT_AMOUNT,
        balance_cents=account.balance_cents,
        customer_id=account.customer_id,
        customer_name=ctx.customer_name or account.name,
    )


# ── Digit-consuming steps ─────────────────────────────────────────


def _require(value, name: str, ctx: CallContext):
    if value is None:
        raise ValueError(f"step {ctx.step.value} reached without {name}")
    return value


def _select_amount(ctx: CallContext, pressed: str, account: Account) -> Transition:
    if not pressed:
        return _escalate(ctx, Reason.NO_INPUT)
    if pressed == "9":
        return _escalate(ctx, Reason.CALLER_REQUEST)
    if account.balance_cents <= 0:
        return _escalate(ctx, Reason.NOTHING_OWED)
    if pressed == "1":
        return _go(ctx, Step.ENTER_CARD, amount_cents=account.balance_cents)
    if pressed == "2":
        return _go(ctx, Step.CUSTOM_AMOUNT)
    return _stay(ctx, balance_cents=account.balance_cents)


def _custom_amount(ctx: CallContext, pressed: str, account: Account) -> Transition:
    cents = digits.parse_amount_cents(pressed, account.balance_cents)
    if isinstance(cents, digits.Invalid):
        return _stay(ctx)
    return _go(ctx, Step.ENTER_CARD, Reason.AMOUNT_ACCEPTED, amount_cents=cents)


def _enter_card(ctx: CallContext, pressed: str) -> Transition:
    _require(ctx.amount_cents, "amount", ctx)
    card = digits.parse_card(pressed)
    if isinstance(card, digits.Invalid):
        return _stay(ctx)
    return _go(ctx, Step.ENTER_EXPIRY, card_number=card)


def _enter_expiry(ctx: CallContext, pressed: str) -> Transition:
    _require(ctx.card_number, "card number", ctx)
    expiry = digits.parse_expiry(pressed)
    if isinstance(expiry, digits.Invalid):
        return _stay(ctx)
    return _go(ctx, Step.ENTER_CVV, expiry=expiry)


def _enter_cvv(ctx: CallContext, pressed: str) -> Transition:
    _require(ctx.expiry, "expiry", ctx)
    cvv = digits.parse_cvv(pressed)
    if isinstance(cvv, digits.Invalid):
        return _stay(ctx)
    return _go(ctx, Step.ENTER_ZIP, cvv=cvv)


def _enter_zip(ctx: CallContext, pressed: str) -> Transition:
    _require(ctx.cvv, "security code", ctx)
    zip_code = digits.parse_zip(pressed)
    if isinstance(zip_code, digits.Invalid):
        return _stay(ctx)
    return _go(ctx, Step.PROCESS_PAYMENT, zip=zip_code)


def _retry(ctx: CallContext, pressed: str, max_retries: int) -> Transition:
    _require(ctx.amount_cents, "amount", ctx)
    if not pressed or pressed == "2":
        return _escalate(ctx, Reason.NO_INPUT if not pressed else Reason.CALLER_REQUEST)
    if pressed == "1":
        if ctx.retry_count >= max_retries:
            return _escalate(ctx, Reason.RETRIES_EXHAUSTED)
        return Transition(
            target=Step.ENTER_CARD,
            context=ctx.without_card_details().at(
                Step.ENTER_CARD, retry_count=ctx.retry_count + 1
            ),
        )
    return _stay(ctx)


def advance(
    ctx: CallContext,
    pressed: str,
    account: Optional[Account],
    max_retries: int = 1,
) -> Transition:
    """Consume the digits delivered to ``ctx.step``.

    ``account`` is the freshly read balance; steps that compare against it
    escalate when it is missing (the customer vanished mid-call).
    """
    pressed = (pressed or "").strip()
    step = ctx.step

    if step is Step.SELECT_AMOUNT:
        if account is None:
            return _escalate(ctx, Reason.NO_ACCOUNT)
        return _select_amount(ctx, pressed, account)
    if step is Step.CUSTOM_AMOUNT:
        if account is None:
            return _escalate(ctx, Reason.NO_ACCOUNT)
        return _custom_amount(ctx, pressed, account)
    if step is Step.ENTER_CARD:
        return _enter_card(ctx, pressed)
    if step is Step.ENTER_EXPIRY:
        return _enter_expiry(ctx, pressed)
    if step is Step.ENTER_CVV:
        return _enter_cvv(ctx, pressed)
    if step is Step.ENTER_ZIP:
        return _enter_zip(ctx, pressed)
    if step is Step.RETRY:
        return _retry(ctx, pressed, max_retries)

    raise ValueError(f"step {step.value} does not consume digits")


# ── Payment ───────────────────────────────────────────────────────


def precheck(ctx: CallContext, account: Optional[Account]) -> Optional[Transition]:
    """Refuse to charge when the collected data or balance no longer fit.

    Returns ``None`` when the charge may go ahead.
    """
    if not ctx.has_card_details:
        raise ValueError("process_payment reached without complete card details")
    if account is None:
        return _escalate(ctx.without_card_details(), Reason.NO_ACCOUNT)
    if account.balance_cents <= 0:
        return _escalate(ctx.without_card_details(), Reason.NOTHING_OWED)
    if ctx.amount_cents > account.balance_cents:
        return _escalate(ctx.without_card_details(), Reason.BALANCE_CHANGED)
    return None


def settle(
    ctx: CallContext,
    result: ChargeResult,
    max_retries: int = 1,
    new_balance_cents: Optional[int] = None,
) -> Transition:
    """Route on the gateway outcome.

    Decline and gateway error lead to the same choice; only the wording
    differs.  Card details are dropped either way.
    """
    cleared = ctx.without_card_details()

    if isinstance(result, Approved):
        return Transition(
            target=Terminal.PAYMENT_CONFIRMED,
            context=cleared,
            balance_cents=new_balance_cents,
            transaction_id=result.transaction_id,
        )

    reason = Reason.DECLINED if isinstance(result, Declined) else Reason.GATEWAY_ERROR
    if ctx.retry_count >= max_retries:
        return Transition(
            target=Terminal.CONNECT_HUMAN,
            context=cleared,
            reason=Reason.RETRIES_EXHAUSTED,
        )
    return _go(cleared, Step.RETRY, reason)

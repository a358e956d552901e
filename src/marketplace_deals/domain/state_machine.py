"""State machine guards for projects, quotes, revisions and escrows.

Uses python-statemachine to enforce legal state transitions at the domain
level. No matter what the API or the coordinator asks for, an illegal jump
(e.g. open -> completed) raises TransitionNotAllowed, which `fire()` turns
into InvalidStateTransitionError.

A machine is instantiated per entity at its persisted status, the event is
fired, and the resulting status is what the caller writes back.

Project transitions:
    open                 -> quote_received       (receive_quote)
    quote_received       -> quote_received       (receive_quote, later quotes)
    quote_received       -> quote_accepted       (accept_quote)
    quote_accepted       -> payment_pending      (request_payment)
    payment_pending      -> in_progress          (start_work)
    in_progress          -> completion_requested (request_completion)
    completion_requested -> completed            (complete)
    open/quote_received/quote_accepted/payment_pending -> cancelled (cancel)
    open/quote_received  -> expired              (expire)
    quote_accepted/payment_pending/in_progress/completion_requested
                         -> abandoned            (abandon)

Quote transitions:
    pending          -> viewed    (mark_viewed)
    pending/viewed   -> accepted  (accept)
    pending/viewed/accepted -> accepted (confirm_revision)
    accepted         -> viewed    (demote)
    pending/viewed   -> rejected  (reject)
    pending/viewed   -> expired   (expire)

Revision transitions:
    pending -> accepted | rejected | modified

Escrow transitions:
    pending  -> held      (hold_funds)
    held     -> released  (release)
    pending/held -> disputed (dispute)
    disputed -> released  (resolve_dispute)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from marketplace_deals.domain.exceptions import InvalidStateTransitionError


class _StatusGuard:
    """Starts a machine at a persisted status string instead of the initial state."""

    entity: str = "entity"

    def __init__(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown {self.entity} status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the status enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return the event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]


class ProjectStateMachine(_StatusGuard, StateMachine):
    entity = "project"

    open = State("Open", value="open", initial=True)
    quote_received = State("Quote received", value="quote_received")
    quote_accepted = State("Quote accepted", value="quote_accepted")
    payment_pending = State("Payment pending", value="payment_pending")
    in_progress = State("In progress", value="in_progress")
    completion_requested = State("Completion requested", value="completion_requested")
    completed = State("Completed", value="completed", final=True)
    cancelled = State("Cancelled", value="cancelled", final=True)
    expired = State("Expired", value="expired", final=True)
    abandoned = State("Abandoned", value="abandoned", final=True)

    receive_quote = open.to(quote_received) | quote_received.to.itself()
    accept_quote = quote_received.to(quote_accepted)
    request_payment = quote_accepted.to(payment_pending)
    start_work = payment_pending.to(in_progress)
    request_completion = in_progress.to(completion_requested)
    complete = completion_requested.to(completed)

    cancel = (
        open.to(cancelled)
        | quote_received.to(cancelled)
        | quote_accepted.to(cancelled)
        | payment_pending.to(cancelled)
    )
    expire = open.to(expired) | quote_received.to(expired)
    abandon = (
        quote_accepted.to(abandoned)
        | payment_pending.to(abandoned)
        | in_progress.to(abandoned)
        | completion_requested.to(abandoned)
    )


class QuoteStateMachine(_StatusGuard, StateMachine):
    entity = "quote"

    pending = State("Pending", value="pending", initial=True)
    viewed = State("Viewed", value="viewed")
    accepted = State("Accepted", value="accepted")
    rejected = State("Rejected", value="rejected", final=True)
    expired = State("Expired", value="expired", final=True)

    mark_viewed = pending.to(viewed)
    accept = pending.to(accepted) | viewed.to(accepted)
    # A provider agreeing to a revision settles the price whatever the
    # quote's current standing, including one that is already accepted.
    confirm_revision = pending.to(accepted) | viewed.to(accepted) | accepted.to.itself()
    demote = accepted.to(viewed)
    reject = pending.to(rejected) | viewed.to(rejected)
    expire = pending.to(expired) | viewed.to(expired)


class RevisionStateMachine(_StatusGuard, StateMachine):
    entity = "revision"

    pending = State("Pending", value="pending", initial=True)
    accepted = State("Accepted", value="accepted", final=True)
    rejected = State("Rejected", value="rejected", final=True)
    modified = State("Modified", value="modified", final=True)

    accept = pending.to(accepted)
    reject = pending.to(rejected)
    modify = pending.to(modified)


class EscrowStateMachine(_StatusGuard, StateMachine):
    entity = "escrow"

    pending = State("Pending", value="pending", initial=True)
    held = State("Held", value="held")
    disputed = State("Disputed", value="disputed")
    released = State("Released", value="released", final=True)

    hold_funds = pending.to(held)
    release = held.to(released)
    dispute = pending.to(disputed) | held.to(disputed)
    resolve_dispute = disputed.to(released)


def fire(
    machine_cls: type[_StatusGuard],
    current_status: str,
    event_name: str,
    reason: str | None = None,
) -> str:
    """Validate a transition and return the status it leads to.

    Args:
        machine_cls: One of the machines above.
        current_status: The entity's persisted status.
        event_name: The event to fire (e.g. "accept").
        reason: Optional plain-language reason overriding the default message.

    Raises:
        InvalidStateTransitionError: If the transition is illegal.
        ValueError: If the status or event name is unknown.
    """
    sm = machine_cls(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    try:
        event_method()
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(
            entity=machine_cls.entity,
            current_state=current_status,
            attempted=event_name,
            reason=reason,
        ) from err
    return sm.status

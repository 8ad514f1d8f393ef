"""
Plan-changed events.

Published after a plan change has been committed, keyed by plan id, so
any open view of that plan can re-fetch the authoritative state.  The core
does not care how a subscriber forwards the event (websocket, SSE, poll
invalidation); it only emits it.

Usage:
    from auditflow.services import plan_events

    def _on_change(plan_id, **event):
        ...

    plan_events.subscribe(_on_change, plan_id="abc")   # one plan
    plan_events.subscribe(_on_change)                  # every plan

    plan_events.subscribe_revisions(_on_request, audit_id="abc")
"""

from __future__ import annotations

import logging

from blinker import Namespace

from auditflow.core.records import PlanRecord

logger = logging.getLogger(__name__)

_signals = Namespace()

plan_changed = _signals.signal("plan-changed")
revision_request_changed = _signals.signal("revision-request-changed")


def subscribe(receiver, plan_id: str | None = None) -> None:
    """Connect ``receiver(plan_id, **event)``; omit ``plan_id`` for all plans."""
    if plan_id is None:
        plan_changed.connect(receiver, weak=False)
    else:
        plan_changed.connect(receiver, sender=plan_id, weak=False)


def unsubscribe(receiver) -> None:
    plan_changed.disconnect(receiver)


def subscribe_revisions(receiver, audit_id: str | None = None) -> None:
    """Connect ``receiver(audit_id, **event)`` to revision-request changes."""
    if audit_id is None:
        revision_request_changed.connect(receiver, weak=False)
    else:
        revision_request_changed.connect(receiver, sender=audit_id, weak=False)


def unsubscribe_revisions(receiver) -> None:
    revision_request_changed.disconnect(receiver)


def publish_plan_changed(plan: PlanRecord, *, event: str, actor_id: str,
                         comment: str | None = None) -> None:
    """Notify subscribers that ``plan`` was committed in a new state."""
    logger.debug("plan-changed %s event=%s status=%s", plan.id, event, plan.status.value)
    plan_changed.send(
        plan.id,
        event=event,
        status=plan.status.value,
        actor_id=actor_id,
        comment=comment,
    )


def publish_revision_changed(request, *, event: str, unmarked_count: int = 0) -> None:
    revision_request_changed.send(
        request.audit_id,
        event=event,
        request_id=request.id,
        status=request.status.value,
        unmarked_count=unmarked_count,
    )

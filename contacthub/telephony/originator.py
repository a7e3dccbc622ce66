"""Outbound call origination over the manager link.

``CallOriginator.originate(from, to)`` rings extension ``from`` and, once
it answers, dials ``to`` in the configured dialplan context.  Link errors
never escape: every call returns an OriginateResult.

There is no de-duplication.  Two originate() calls place two calls, and a
request in flight when the link reconnects is not replayed (it resolves
to ``timed_out``).
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel, ConfigDict

from contacthub.manager.base import (
    ActionRejected,
    ActionTimeout,
    ConnectionUnavailable,
    ManagerLink,
    ManagerLinkError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000


class OriginateOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


class OriginateRequest(BaseModel):
    """One outbound call request. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    from_extension: str
    to_destination: str
    caller_id_label: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    context: str = "from-internal"
    channel_technology: str = "PJSIP"
    priority: int = 1

    def to_action(self) -> dict[str, str]:
        """Render the AMI ``Originate`` action."""
        return {
            "Action": "Originate",
            "Channel": f"{self.channel_technology}/{self.from_extension}",
            "Context": self.context,
            "Exten": self.to_destination,
            "Priority": str(self.priority),
            "CallerID": self.caller_id_label,
            "Timeout": str(self.timeout_ms),
        }


class OriginateResult(BaseModel):
    """Outcome of one originate() call."""

    outcome: OriginateOutcome
    reason: str = ""
    error: str = ""  # taxonomy name, e.g. "ConnectionUnavailable"
    action_id: str = ""

    @property
    def accepted(self) -> bool:
        return self.outcome is OriginateOutcome.ACCEPTED


class CallOriginator:
    """Build and submit Originate actions.

    Args:
        link: Manager link shared with the event bridge.
        context: Dialplan context the destination is dialled in.
        channel_technology: Channel driver for the calling extension.
        timeout_ms: Ring timeout sent to the PBX, also the response bound.
        caller_id_template: ``str.format`` template with ``{extension}``.
    """

    def __init__(
        self,
        link: ManagerLink,
        *,
        context: str = "from-internal",
        channel_technology: str = "PJSIP",
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        caller_id_template: str = "poste {extension}",
    ) -> None:
        self._link = link
        self._context = context
        self._channel_technology = channel_technology
        self._timeout_ms = timeout_ms
        self._caller_id_template = caller_id_template

    def build_request(self, from_extension: str, to_destination: str) -> OriginateRequest:
        return OriginateRequest(
            from_extension=from_extension,
            to_destination=to_destination,
            caller_id_label=self._caller_id_template.format(extension=from_extension),
            timeout_ms=self._timeout_ms,
            context=self._context,
            channel_technology=self._channel_technology,
        )

    async def originate(self, from_extension: str, to_destination: str) -> OriginateResult:
        """Place a call from ``from_extension`` to ``to_destination``."""
        from_extension = (from_extension or "").strip()
        to_destination = (to_destination or "").strip()
        if not from_extension or not to_destination:
            logger.warning("Originate refused: 'from' and 'to' are required")
            return OriginateResult(
                outcome=OriginateOutcome.REJECTED,
                reason="'from' and 'to' are required",
                error="InvalidRequest",
            )

        request = self.build_request(from_extension, to_destination)
        try:
            response = await self._link.send_action(
                request.to_action(), timeout=request.timeout_ms / 1000,
            )
        except ActionTimeout as e:
            logger.error("Originate %s -> %s timed out: %s", from_extension, to_destination, e)
            return OriginateResult(
                outcome=OriginateOutcome.TIMED_OUT,
                reason=str(e),
                error="ActionTimeout",
                action_id=e.action_id,
            )
        except ActionRejected as e:
            logger.error("Originate %s -> %s rejected: %s", from_extension, to_destination, e.reason)
            return OriginateResult(
                outcome=OriginateOutcome.REJECTED,
                reason=e.reason,
                error="ActionRejected",
                action_id=e.action_id,
            )
        except ConnectionUnavailable as e:
            logger.error("Originate %s -> %s not sent: %s", from_extension, to_destination, e)
            return OriginateResult(
                outcome=OriginateOutcome.REJECTED,
                reason=str(e),
                error="ConnectionUnavailable",
            )
        except ManagerLinkError as e:
            logger.error("Originate %s -> %s failed: %s", from_extension, to_destination, e)
            return OriginateResult(
                outcome=OriginateOutcome.REJECTED,
                reason=str(e),
                error=type(e).__name__,
            )

        logger.info(
            "Call launched from %s to %s (%s)",
            from_extension, to_destination, response.message or "accepted",
        )
        return OriginateResult(
            outcome=OriginateOutcome.ACCEPTED,
            reason=response.message,
            action_id=response.action_id,
        )

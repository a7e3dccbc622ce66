"""PBX manager link: AMI codec, link contract and client."""

from .ami_client import AmiClient
from .base import (
    ActionRejected,
    ActionTimeout,
    ConnectError,
    ConnectionUnavailable,
    EventSubscription,
    ManagerLink,
    ManagerLinkError,
    ManagerSessionState,
)
from .frames import ManagerFrame

__all__ = [
    "ActionRejected",
    "ActionTimeout",
    "AmiClient",
    "ConnectError",
    "ConnectionUnavailable",
    "EventSubscription",
    "ManagerFrame",
    "ManagerLink",
    "ManagerLinkError",
    "ManagerSessionState",
]

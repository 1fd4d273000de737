from __future__ import annotations

"""Exception types raised across the gateway, storage and orchestration layers."""


class GatewayError(RuntimeError):
    """A call to the generative backend failed."""


class GatewayTimeout(GatewayError):
    """A backend call did not finish within its fixed time bound."""


class MalformedResponse(GatewayError):
    """The backend answered, but not with something we can use."""


class EntitlementError(GatewayError):
    """The API key cannot access the requested model (video generation)."""


class StorageQuotaExceeded(OSError):
    """Writing the store would exceed its configured capacity."""


class SlotBusy(RuntimeError):
    """An action is already in flight for the same slot."""

    def __init__(self, slot) -> None:
        super().__init__(f"Action already in progress: {slot!r}")
        self.slot = slot

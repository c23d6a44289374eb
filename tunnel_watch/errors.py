from __future__ import annotations


class TunnelWatchError(Exception):
    pass


class ConfigurationError(TunnelWatchError, ValueError):
    """Inventory text missing or a mandatory field could not be extracted."""


class AccountFetchError(TunnelWatchError):
    def __init__(self, account_id: str, message: str) -> None:
        super().__init__(message)
        self.account_id = account_id
        self.message = message


class RemediationDispatchError(TunnelWatchError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NotificationDeliveryError(TunnelWatchError):
    pass


class AuthorizationError(TunnelWatchError):
    def __init__(self, reason: str, *, status_code: int = 403) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code

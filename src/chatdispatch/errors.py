from __future__ import annotations


class DispatchError(Exception):
    pass


class MalformedEvent(DispatchError):
    def __init__(self, reason: str, raw: object | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class TransientStoreError(DispatchError):
    def __init__(self, operation: str, description: str | None = None) -> None:
        super().__init__(description or f"store unavailable during {operation}")
        self.operation = operation
        self.description = description


class SecurityBlocked(DispatchError):
    def __init__(self, tenant_id: str, reason: str | None = None) -> None:
        super().__init__(reason or f"event blocked for tenant {tenant_id}")
        self.tenant_id = tenant_id
        self.reason = reason


class HandlerError(DispatchError):
    def __init__(self, handler: str, cause: BaseException) -> None:
        super().__init__(f"{handler} failed: {cause!r}")
        self.handler = handler
        self.cause = cause

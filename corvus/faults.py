"""
Corvus faults - Structured error types.

Defines:
- FaultDomain (explicit fault domains)
- Fault base class (code + message + domain + metadata)
- Startup faults (listen, database, routing, configuration)
- Request faults raised while parsing inbound bodies
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class FaultDomain:
    """
    Fault domains (taxonomy).

    Identifies the functional area where a fault occurred.
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.value = name
        self.description = description

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"FaultDomain(name='{self.name}')"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, FaultDomain):
            return self.name == other.name
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(self.name)


FaultDomain.CONFIG = FaultDomain("config", "Configuration errors")
FaultDomain.DI = FaultDomain("di", "Dependency injection errors")
FaultDomain.ROUTING = FaultDomain("routing", "Route construction and matching errors")
FaultDomain.MODEL = FaultDomain("model", "Database and model errors")
FaultDomain.IO = FaultDomain("io", "Socket and request I/O")
FaultDomain.SYSTEM = FaultDomain("system", "System level faults")


class Fault(Exception):
    """
    Base fault class.

    A fault carries a stable machine-readable ``code``, a human-readable
    ``message``, a ``domain`` and free-form ``metadata``. ``public`` marks
    faults whose message is safe to send to a client.
    """

    code: str = "FAULT"
    message: str = "Unexpected fault"
    domain: FaultDomain = FaultDomain.SYSTEM
    public: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        domain: Optional[FaultDomain] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or type(self).message
        self.code = code or type(self).code
        self.domain = domain or type(self).domain
        self.metadata = metadata or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "domain": self.domain.value,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# ============================================================================
# Startup faults
# ============================================================================

class ConfigurationFault(Fault):
    """Invalid configuration, or configuration after the server started."""
    code = "CONFIG_INVALID"
    message = "Invalid configuration"
    domain = FaultDomain.CONFIG


class ListenFault(Fault):
    """The server could not bind its listening socket."""
    code = "LISTEN_FAILED"
    message = "Server failed to listen"
    domain = FaultDomain.IO

    def __init__(self, host: str, port: int, reason: str):
        super().__init__(
            f"Cannot listen on {host}:{port}: {reason}",
            metadata={"host": host, "port": port, "reason": reason},
        )


class DatabaseConnectionFault(Fault):
    """One or more database modules failed to connect."""
    code = "DB_CONNECTION_FAILED"
    message = "Database connection failed"
    domain = FaultDomain.MODEL

    def __init__(self, database: str, reason: str):
        super().__init__(
            f"Database '{database}' failed to connect: {reason}",
            metadata={"database": database, "reason": reason},
        )


class MetadataNotFoundFault(Fault):
    """A controller was mounted without declared route metadata."""
    code = "METADATA_NOT_FOUND"
    message = "Controller metadata not found"
    domain = FaultDomain.ROUTING

    def __init__(self, key: str, controller: Any):
        name = getattr(controller, "__qualname__", repr(controller))
        super().__init__(
            f"No '{key}' metadata declared for controller {name}",
            metadata={"key": key, "controller": name},
        )


class HandlerNotFoundFault(Fault):
    """A route entry names a method the controller instance does not have."""
    code = "HANDLER_NOT_FOUND"
    message = "Route handler not found"
    domain = FaultDomain.ROUTING


# ============================================================================
# Request faults
# ============================================================================

class RequestFault(Fault):
    """Base class for faults caused by the inbound request."""
    domain = FaultDomain.IO
    public = True
    status = 400


class BadRequest(RequestFault):
    """Malformed request (400)."""
    code = "BAD_REQUEST"
    message = "Bad request"


class PayloadTooLarge(RequestFault):
    """Request payload exceeds limits (413)."""
    code = "PAYLOAD_TOO_LARGE"
    message = "Payload too large"
    status = 413


class InvalidJSON(RequestFault):
    """Invalid JSON payload (400)."""
    code = "INVALID_JSON"
    message = "Invalid JSON"


class ClientDisconnect(RequestFault):
    """Client disconnected during request (499)."""
    code = "CLIENT_DISCONNECT"
    message = "Client disconnected"
    status = 499

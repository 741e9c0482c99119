"""
service.py - Request/Response Contract

LedgerService is the boundary a transport layer (HTTP routes, a CLI, a UI
backend) calls into. It takes mapping payloads with the wire field names,
validates required fields, invokes the EscrowEngine and maps every outcome to
a Response:

    200  {"result": {...}}                       success
    400  {"error": ..., "code": "ValidationError"}
    400  {"error": ..., "code": "InsufficientFunds", "have": ..., "need": ...}
    400  {"error": ..., "code": "EscrowNotReady", "readyAt": ...}
    404  {"error": ..., "code": "EscrowNotFound"}
    500  {"error": "Failed to ...", "code": "InternalFault"}
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from .core import (
    LedgerError, ValidationError, InsufficientFunds, EscrowNotFound, EscrowNotReady,
    InternalFault,
    format_amount, format_timestamp, parse_sequence, require_text,
)
from .escrow_engine import EscrowEngine


DID_PREFIX = "did:xrpl:"
DID_SEED_SUFFIX_LENGTH = 6

# Operation names accepted by LedgerService.handle()
OPERATION_ISSUE = "issue"
OPERATION_CREATE_ESCROW = "createEscrow"
OPERATION_FINISH_ESCROW = "finishEscrow"
OPERATION_GET_BALANCES = "getBalances"
OPERATION_CREATE_DID = "createDid"
OPERATION_SET_TRUSTLINE = "setTrustline"


@dataclass(frozen=True)
class Response:
    """
    Outcome of one service call.

    Attributes:
        status: HTTP-style status code (200, 400, 404, 500)
        body: JSON-serializable payload
        error: The exception behind a failed call, if any
    """
    status: int
    body: Dict[str, Any]
    error: Optional[Exception] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.status == 200


def _success(result: Any, message: Optional[str] = None) -> Response:
    if isinstance(result, dict):
        result = {"status": "success", **result}
        if message:
            result["message"] = message
    return Response(200, {"result": result})


def _failure(status: int, exc: LedgerError, **details: Any) -> Response:
    body = {"error": str(exc), "code": type(exc).__name__, **details}
    return Response(status, body, exc)


class LedgerService:
    """
    Request/response facade over an EscrowEngine.

    Example:
        service = LedgerService(EscrowEngine(verbose=False))
        response = service.handle("issue", {
            "seed": "sEdIssuer", "destination": "rDest", "currency": "RLUSD", "value": "100",
        })
        response.status   # 200
    """

    def __init__(self, engine: Optional[EscrowEngine] = None):
        self.engine = engine if engine is not None else EscrowEngine()
        self._operations: Dict[str, Callable[[Mapping[str, Any]], Response]] = {
            OPERATION_ISSUE: self.issue,
            OPERATION_CREATE_ESCROW: self.create_escrow,
            OPERATION_FINISH_ESCROW: self.finish_escrow,
            OPERATION_GET_BALANCES: self.get_balances,
            OPERATION_CREATE_DID: self.create_did,
            OPERATION_SET_TRUSTLINE: self.set_trustline,
        }

    @property
    def operations(self):
        return sorted(self._operations)

    def handle(self, operation: str, payload: Optional[Mapping[str, Any]] = None) -> Response:
        """Dispatch a payload to the named operation (404 for unknown operations)."""
        handler = self._operations.get(operation)
        if handler is None:
            return Response(404, {"error": f"Unknown operation {operation!r}", "code": "UnknownOperation"})
        return handler(payload or {})

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def issue(self, payload: Mapping[str, Any]) -> Response:
        def run():
            _require_fields(payload, "seed", "destination", "currency", "value")
            result = self.engine.issue(
                payload["seed"], payload["destination"], payload["currency"], payload["value"]
            )
            return _success(result.to_dict(), "Token issued successfully")
        return self._guard("issue token", run)

    def create_escrow(self, payload: Mapping[str, Any]) -> Response:
        def run():
            _require_fields(payload, "seed", "destination", "amount", "currency")
            result = self.engine.create_escrow(
                payload["seed"],
                payload["destination"],
                payload["amount"],
                payload["currency"],
                payload.get("finishAfter"),
            )
            return _success(result.to_dict(), "Escrow contract initialized - funds locked")
        return self._guard("create escrow", run)

    def finish_escrow(self, payload: Mapping[str, Any]) -> Response:
        """
        Finish an escrow by offerSequence.

        owner and seed may be present in the payload; they are informational
        and not checked against the escrow's owner.
        """
        def run():
            sequence = parse_sequence(payload.get("offerSequence"))
            result = self.engine.finish_escrow(sequence)
            return _success(result.to_dict(), "Escrow finished - funds released to destination")
        return self._guard("finish escrow", run)

    def get_balances(self, payload: Mapping[str, Any]) -> Response:
        def run():
            address = require_text(payload.get("address"), "address")
            balances = self.engine.get_balances(address)
            return _success([b.to_dict() for b in balances])
        return self._guard("fetch balances", run)

    # ========================================================================
    # STATELESS ACKNOWLEDGEMENTS
    # ========================================================================

    def create_did(self, payload: Mapping[str, Any]) -> Response:
        """Return a placeholder DID built from the seed; nothing is recorded."""
        def run():
            seed = require_text(payload.get("seed"), "seed")
            return _success({
                "did": f"{DID_PREFIX}{seed[-DID_SEED_SUFFIX_LENGTH:]}",
                "seed": seed,
                "timestamp": format_timestamp(self.engine.current_time),
            }, "DID created successfully")
        return self._guard("create DID", run)

    def set_trustline(self, payload: Mapping[str, Any]) -> Response:
        """Acknowledge a trustline request; balances are not affected."""
        def run():
            _require_fields(payload, "seed", "issuer", "currency")
            return _success({
                "currency": require_text(payload["currency"], "currency"),
                "issuer": require_text(payload["issuer"], "issuer"),
                "timestamp": format_timestamp(self.engine.current_time),
            }, "Trustline set successfully")
        return self._guard("set trustline", run)

    # ========================================================================
    # ERROR MAPPING
    # ========================================================================

    def _guard(self, action: str, run: Callable[[], Response]) -> Response:
        try:
            return run()
        except ValidationError as e:
            return _failure(400, e, field=e.field)
        except InsufficientFunds as e:
            return _failure(400, e, have=format_amount(e.have), need=format_amount(e.need))
        except EscrowNotReady as e:
            return _failure(400, e, readyAt=format_timestamp(e.ready_at))
        except EscrowNotFound as e:
            return _failure(404, e)
        except Exception as e:
            if self.engine.verbose:
                print(f"❌ {action} failed: {type(e).__name__}: {e}")
            fault = InternalFault(f"Failed to {action}")
            fault.__cause__ = e
            return _failure(500, fault)


def _require_fields(payload: Mapping[str, Any], *names: str) -> None:
    """Raise ValidationError naming every missing or empty field."""
    missing = [n for n in names if payload.get(n) in (None, "")]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required", missing[0])

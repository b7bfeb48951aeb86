"""Lightweight HTTP control surface: health, status, parameters and manual commands."""

from __future__ import annotations

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, Optional, Tuple

from core.exceptions import CriticalDataUnavailable, ExecutionFailed, TradeRejected
from core.models import VALID_ACTIONS, TradingInstruction
from core.params import ParameterUpdateError

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 64 * 1024


class CommandError(ValueError):
    """Malformed manual command."""


def parse_command(body: Dict[str, Any]) -> TradingInstruction:
    """Validate a manual command payload and build the instruction."""
    if not isinstance(body, dict):
        raise CommandError("command body must be a JSON object")

    action = body.get("action")
    if action not in VALID_ACTIONS:
        raise CommandError(f"action must be one of {sorted(VALID_ACTIONS)}")

    source = body.get("source", body.get("fromToken"))
    destination = body.get("destination", body.get("toToken"))
    if action != "hold":
        if not isinstance(source, str) or not source:
            raise CommandError("source is required")
        if not isinstance(destination, str) or not destination:
            raise CommandError("destination is required")
        if source == destination:
            raise CommandError("source and destination must differ")

    raw_amount = body.get("amount", 0)
    if isinstance(raw_amount, bool):
        raise CommandError("amount must be a number")
    try:
        amount = float(raw_amount)
    except (TypeError, ValueError):
        raise CommandError("amount must be a number")
    if action != "hold" and amount <= 0:
        raise CommandError("amount must be positive")

    return TradingInstruction(
        action=action,
        source=source,
        destination=destination,
        amount=amount,
        reason=str(body.get("reason") or "manual command"),
        confidence=1.0,
        bypass_risk=False,
        strategy="manual",
    )


class ControlServer:
    """JSON control server bound to a trading cycle pipeline."""

    def __init__(self, port: int, pipeline, host: str = "127.0.0.1"):
        self._port = int(port)
        self._host = host
        self.pipeline = pipeline
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> Optional[int]:
        if self._server is None:
            return None
        return self._server.server_port

    def start(self) -> None:
        if self._thread:
            return

        handler_cls = self._build_handler(self)
        self._server = HTTPServer((self._host, self._port), handler_cls)
        self._thread = threading.Thread(target=self._server.serve_forever, name="ControlServer", daemon=True)
        self._thread.start()
        logger.info("Control server listening on %s:%s", self._host, self._server.server_port)

    def stop(self) -> None:
        if not self._server:
            return
        try:
            self._server.shutdown()
            self._server.server_close()
        except OSError as exc:
            logger.warning("Failed shutting down control server: %s", exc)
        if self._thread:
            self._thread.join(timeout=3)
        self._thread = None
        self._server = None

    # ------------------------------------------------------------------ #
    # Route implementations (status code, payload)
    # ------------------------------------------------------------------ #

    def health(self) -> Tuple[int, Dict[str, Any]]:
        last = self.pipeline.last_result
        ok = last is None or last.status not in ("error", "data_unavailable")
        return (200 if ok else 503), {
            "ok": ok,
            "cycles": self.pipeline.cycle_count,
            "last_status": last.status if last else None,
        }

    def status(self) -> Tuple[int, Dict[str, Any]]:
        agent_state = self.pipeline.state_store.load_agent_state()
        payload: Dict[str, Any] = {
            "agent": agent_state.to_dict(),
            "params_version": self.pipeline.param_store.version,
            "orchestrator": self.pipeline.orchestrator.status(),
            "recent_trades": self.pipeline.risk_gate.recent_trade_count(),
            "last_cycle": self.pipeline.last_result.to_dict() if self.pipeline.last_result else None,
            "events": self.pipeline.state_store.recent_events(10),
        }
        snapshot = self.pipeline.last_snapshot
        if snapshot is not None:
            payload["risk"] = self.pipeline.risk_gate.risk_metrics(agent_state, snapshot)
        return 200, payload

    def get_params(self) -> Tuple[int, Dict[str, Any]]:
        return 200, {
            "version": self.pipeline.param_store.version,
            "params": self.pipeline.param_store.get().to_dict(),
        }

    def update_params(self, body: Any) -> Tuple[int, Dict[str, Any]]:
        if not isinstance(body, dict) or not body:
            return 400, {"error": "parameter update must be a non-empty JSON object"}
        try:
            params = self.pipeline.param_store.update(body)
        except ParameterUpdateError as e:
            return 400, {"error": str(e)}
        logger.info("Parameters updated via control server: %s", sorted(body))
        return 200, {"version": self.pipeline.param_store.version, "params": params.to_dict()}

    def set_active(self, active: bool) -> Tuple[int, Dict[str, Any]]:
        agent_state = self.pipeline.state_store.set_active(active)
        return 200, {"is_active": agent_state.is_active}

    def reset_window(self) -> Tuple[int, Dict[str, Any]]:
        self.pipeline.risk_gate.reset_trade_window()
        logger.info("Trade frequency window reset via control server")
        return 200, {"recent_trades": 0}

    def command(self, body: Any) -> Tuple[int, Dict[str, Any]]:
        try:
            instruction = parse_command(body)
        except CommandError as e:
            return 400, {"error": str(e)}

        try:
            result = self.pipeline.process_external_instruction(instruction)
        except TradeRejected as e:
            return 422, {"error": e.reason, "violated_checks": e.violated_checks}
        except CriticalDataUnavailable as e:
            return 503, {"error": f"market data unavailable: {e}"}
        except ExecutionFailed as e:
            return 502, {"error": f"execution failed: {e}"}

        return (200 if result.success else 502), {
            "success": result.success,
            "trade_id": result.trade_id,
            "from_amount": result.from_amount,
            "to_amount": result.to_amount,
            "price": result.price,
            "error": result.error,
        }

    @staticmethod
    def _build_handler(control: "ControlServer"):
        get_routes = {
            "/": control.health,
            "/health": control.health,
            "/status": control.status,
            "/params": control.get_params,
        }
        post_routes = {
            "/params": control.update_params,
            "/pause": lambda _body: control.set_active(False),
            "/resume": lambda _body: control.set_active(True),
            "/risk/reset-window": lambda _body: control.reset_window(),
            "/command": control.command,
        }

        class ControlHandler(BaseHTTPRequestHandler):
            def do_GET(self):  # type: ignore[override]
                route = get_routes.get(self.path.split("?", 1)[0])
                if route is None:
                    self._send(404, {"error": "not found"})
                    return
                self._dispatch(route)

            def do_POST(self):  # type: ignore[override]
                route = post_routes.get(self.path.split("?", 1)[0])
                if route is None:
                    self._send(404, {"error": "not found"})
                    return

                length = int(self.headers.get("Content-Length") or 0)
                if length > MAX_BODY_BYTES:
                    self._send(413, {"error": "request body too large"})
                    return
                raw = self.rfile.read(length) if length else b""
                try:
                    body = json.loads(raw.decode("utf-8")) if raw else {}
                except (UnicodeDecodeError, json.JSONDecodeError):
                    self._send(400, {"error": "invalid JSON body"})
                    return
                self._dispatch(route, body)

            def _dispatch(self, route, *args):
                try:
                    status, payload = route(*args)
                except Exception as exc:
                    logger.error("Control request %s failed: %s", self.path, exc, exc_info=True)
                    status, payload = 500, {"error": str(exc)}
                self._send(status, payload)

            def _send(self, status: int, payload: Dict[str, Any]) -> None:
                body = json.dumps(payload, default=str).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - suppress noisy logs
                return

        return ControlHandler


__all__ = ["CommandError", "ControlServer", "parse_command"]

"""Virtual service that answers the outbound calls a workflow makes during a test."""

from __future__ import annotations

import asyncio
import json
import logging
import socket
import threading
import time
from collections import defaultdict
from typing import Any, Callable, Iterable, Optional
from urllib.parse import parse_qsl, urlsplit

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .differ import matches
from .jsonpath_utils import evaluate_condition
from .models import CapturedCall, MockEndpoint, MockRule, MockScenario

logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

TRIGGER_TYPES = ("email", "filesystem")


def _node_kind(node_type: str) -> str:
    """'n8n-nodes-base.httpRequest' -> 'httpRequest'."""
    return (node_type or "").rsplit(".", 1)[-1]


class VirtualService:
    """
    Starlette-based stand-in for every external service a workflow calls.

    Mocks are kept in a route table keyed by METHOD:PATH and matched exactly.
    Every inbound request is captured for later inspection. The route table
    and the call log are shared by all tests using this instance; they are
    bracketed per test by register_mocks()/clear_mocks().
    """

    def __init__(self, port: int = 3456, host: str = "127.0.0.1", startup_timeout: float = 10.0):
        self._host = host
        self._requested_port = port
        self._port = port
        self._startup_timeout = startup_timeout

        self._lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._endpoints: dict[str, MockEndpoint] = {}
        self._calls: dict[str, list[CapturedCall]] = defaultdict(list)
        self._trigger_handlers: dict[str, Callable[[Any], Any]] = {}
        self._webhook_handlers: dict[str, Callable[[CapturedCall], Any]] = {}

        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._socket: Optional[socket.socket] = None

        self._app = Starlette(routes=[
            Route("/health", self._health, methods=["GET"]),
            Route("/_trigger/email", self._trigger_email, methods=["POST"]),
            Route("/_trigger/filesystem", self._trigger_filesystem, methods=["POST"]),
            Route("/_trigger/clear", self._trigger_clear, methods=["POST"]),
            Route("/_register/webhook", self._register_webhook, methods=["POST"]),
            Route("/webhook/{webhook_path:path}", self._webhook, methods=ALL_METHODS),
            Route("/{full_path:path}", self._dispatch, methods=ALL_METHODS),
        ])

    @property
    def app(self) -> Starlette:
        return self._app

    @property
    def port(self) -> int:
        return self._port

    @property
    def base_url(self) -> str:
        return f"http://{self._host}:{self._port}"

    # Lifecycle

    def start(self):
        """Bind the listening socket and serve on a background thread. No-op when running."""
        with self._state_lock:
            if self.is_running():
                return

            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                sock.bind((self._host, self._requested_port))
            except OSError as e:
                sock.close()
                logger.error("Port %s is already in use or unavailable: %s", self._requested_port, e)
                raise
            self._port = sock.getsockname()[1]

            config = uvicorn.Config(self._app, log_level="warning", lifespan="off", access_log=False)
            server = uvicorn.Server(config)
            thread = threading.Thread(
                target=server.run,
                kwargs={"sockets": [sock]},
                name="flowreplay-virtual-service",
                daemon=True,
            )
            thread.start()

            deadline = time.monotonic() + self._startup_timeout
            while not server.started:
                if not thread.is_alive() or time.monotonic() > deadline:
                    server.should_exit = True
                    sock.close()
                    raise RuntimeError(f"Virtual service failed to start on port {self._port}")
                time.sleep(0.01)

            self._server = server
            self._thread = thread
            self._socket = sock
            logger.info("Virtual service started on port %s", self._port)

    def stop(self):
        """Shut the server down and release the port. No-op when stopped."""
        with self._state_lock:
            if self._server is None:
                return
            self._server.should_exit = True
            if self._thread is not None:
                self._thread.join(timeout=self._startup_timeout)
            if self._socket is not None:
                self._socket.close()
            self._server = None
            self._thread = None
            self._socket = None
            logger.info("Virtual service stopped")

    def is_running(self) -> bool:
        return (
            self._server is not None
            and self._thread is not None
            and self._thread.is_alive()
            and not self._server.should_exit
        )

    def __enter__(self) -> "VirtualService":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()

    # Route table

    def register_mocks(self, rules: Iterable[MockRule]):
        """Translate mock rules into endpoints. Later keys overwrite earlier ones."""
        for rule in rules:
            for endpoint in self._endpoints_for(rule):
                self.register_endpoint(endpoint)

    def register_endpoint(self, endpoint: MockEndpoint):
        with self._lock:
            self._endpoints[endpoint.key] = endpoint
        logger.debug("Registered mock %s", endpoint.key)

    def clear_mocks(self):
        """Empty the route table and the captured-calls log."""
        with self._lock:
            self._endpoints.clear()
            self._calls.clear()

    def registered_keys(self) -> list[str]:
        with self._lock:
            return list(self._endpoints.keys())

    def get_calls(self, method: str, path: str) -> list[CapturedCall]:
        with self._lock:
            return list(self._calls.get(f"{method.upper()}:{path}", []))

    def get_all_calls(self) -> dict[str, list[CapturedCall]]:
        with self._lock:
            return {key: list(calls) for key, calls in self._calls.items()}

    def register_trigger_handler(self, trigger_type: str, handler: Callable[[Any], Any]):
        """Handle POST /_trigger/<trigger_type>; the handler receives the request body."""
        if trigger_type not in TRIGGER_TYPES:
            raise ValueError(f"Unknown trigger type '{trigger_type}', expected one of {TRIGGER_TYPES}")
        with self._lock:
            self._trigger_handlers[trigger_type] = handler

    def register_webhook_handler(self, path: str, handler: Callable[[CapturedCall], Any]):
        """Handle any request to a /webhook/... path; the handler's return value is the response."""
        if not path.startswith("/webhook/"):
            path = "/webhook/" + path.lstrip("/")
        with self._lock:
            self._webhook_handlers[path] = handler

    def _endpoints_for(self, rule: MockRule) -> list[MockEndpoint]:
        kind = _node_kind(rule.node_type)
        path = rule.path
        if path is None and rule.url:
            path = urlsplit(rule.url).path or "/"

        if kind == "webhook":
            return [MockEndpoint(
                method=(rule.method or "POST").upper(),
                path=path or f"/webhook/{rule.node_name or 'test'}",
                response=rule.response,
                delay=rule.delay,
                scenarios=list(rule.scenarios),
            )]

        if kind == "emailSend":
            response = rule.response
            if response is None or isinstance(response, dict):
                response = {
                    "success": True,
                    "messageId": f"mock-{int(time.time() * 1000)}",
                    **(response or {}),
                }
            return [MockEndpoint(
                method="POST",
                path=path or "/smtp/send",
                response=response,
                delay=rule.delay,
                scenarios=list(rule.scenarios),
            )]

        if path is None:
            logger.debug("Mock for %s has no url or path; nothing to route", rule.node_type)
            return []

        return [MockEndpoint(
            method=(rule.method or "GET").upper(),
            path=path,
            response=rule.response,
            delay=rule.delay,
            scenarios=list(rule.scenarios),
        )]

    # Request handling

    async def _capture(self, request: Request) -> CapturedCall:
        raw = await request.body()
        body: Any = None
        if raw:
            content_type = request.headers.get("content-type", "")
            text = raw.decode("utf-8", errors="replace")
            if "application/x-www-form-urlencoded" in content_type:
                body = dict(parse_qsl(text))
            else:
                try:
                    body = json.loads(text)
                except ValueError:
                    body = text

        call = CapturedCall(
            method=request.method,
            path=request.url.path,
            headers=dict(request.headers),
            body=body,
            query=dict(request.query_params),
        )
        with self._lock:
            self._calls[f"{call.method}:{call.path}"].append(call)
        return call

    def _find_endpoint(self, call: CapturedCall) -> Optional[MockEndpoint]:
        with self._lock:
            return self._endpoints.get(f"{call.method}:{call.path}")

    @staticmethod
    def _scenario_matches(scenario: MockScenario, call: CapturedCall) -> bool:
        condition = scenario.condition
        if callable(condition):
            return bool(condition(call))
        if isinstance(condition, str):
            return evaluate_condition(call.to_dict(), condition)
        if isinstance(condition, dict):
            return matches(call.to_dict(), condition)
        return False

    def evaluate_response(self, endpoint: MockEndpoint, call: CapturedCall) -> Any:
        """Pick the response for a request: responder, first matching scenario, or static value."""
        if callable(endpoint.response):
            return endpoint.response(call)

        for scenario in endpoint.scenarios:
            if self._scenario_matches(scenario, call):
                return scenario.response

        return endpoint.response

    @staticmethod
    def _render(response: Any) -> Response:
        if isinstance(response, Response):
            return response

        if isinstance(response, dict):
            if "body" in response:
                status = response.get("status")
                return JSONResponse(
                    response["body"],
                    status_code=status if isinstance(status, int) else 200,
                    headers=response.get("headers"),
                )
            if "error" in response:
                status = response.get("status")
                return JSONResponse(
                    {"error": response["error"], "message": response.get("message", "Mock error")},
                    status_code=status if isinstance(status, int) else 500,
                )

        return JSONResponse(response)

    async def _respond(self, endpoint: MockEndpoint, call: CapturedCall) -> Response:
        response = self.evaluate_response(endpoint, call)
        if endpoint.delay and endpoint.delay > 0:
            await asyncio.sleep(endpoint.delay)
        return self._render(response)

    async def _dispatch(self, request: Request) -> Response:
        call = await self._capture(request)
        endpoint = self._find_endpoint(call)
        if endpoint is None:
            return JSONResponse(
                {
                    "error": "Mock not found",
                    "message": f"No mock registered for {call.method} {call.path}",
                    "availableMocks": self.registered_keys(),
                },
                status_code=404,
            )
        return await self._respond(endpoint, call)

    async def _health(self, request: Request) -> Response:
        await self._capture(request)
        return JSONResponse({"status": "ok", "port": self._port})

    async def _webhook(self, request: Request) -> Response:
        call = await self._capture(request)
        with self._lock:
            handler = self._webhook_handlers.get(call.path)
        if handler is not None:
            return self._render(handler(call))

        endpoint = self._find_endpoint(call)
        if endpoint is not None:
            return await self._respond(endpoint, call)

        return JSONResponse({"error": "Webhook not found", "path": call.path}, status_code=404)

    async def _run_trigger(self, trigger_type: str, request: Request) -> Any:
        call = await self._capture(request)
        with self._lock:
            handler = self._trigger_handlers.get(trigger_type)
        if handler is not None:
            handler(call.body)
        return call.body if isinstance(call.body, dict) else {}

    async def _trigger_email(self, request: Request) -> Response:
        body = await self._run_trigger("email", request)
        return JSONResponse({"success": True, "messageId": body.get("messageId")})

    async def _trigger_filesystem(self, request: Request) -> Response:
        await self._run_trigger("filesystem", request)
        return JSONResponse({"success": True})

    async def _trigger_clear(self, request: Request) -> Response:
        await self._capture(request)
        with self._lock:
            self._trigger_handlers.clear()
            self._webhook_handlers.clear()
        return JSONResponse({"success": True})

    async def _register_webhook(self, request: Request) -> Response:
        call = await self._capture(request)
        body = call.body if isinstance(call.body, dict) else {}
        path = body.get("path")
        if not path:
            return JSONResponse({"success": False, "error": "path is required"}, status_code=400)

        response = body.get("response", {"success": True})
        self.register_webhook_handler(path, lambda _call: response)
        if not path.startswith("/webhook/"):
            path = "/webhook/" + path.lstrip("/")
        return JSONResponse({"success": True, "path": path})

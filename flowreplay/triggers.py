"""Delivery of webhook, email and file system triggers to a running virtual service."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Any, Optional

import httpx

from .events import EventEmitter
from .exceptions import TriggerError
from .models import TriggerSpec

logger = logging.getLogger(__name__)

FILESYSTEM_EVENTS = ("create", "update", "delete")
BODYLESS_METHODS = ("GET", "HEAD")


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class TriggerSimulator(EventEmitter):
    """
    Acts as the outside world for a workflow under test: sends the webhook
    request, delivers the email or reports the file change that would start
    it in production.

    Events (listener arguments in parentheses):
        webhook:triggered (record), webhook:error (record, error),
        email:triggered (record), filesystem:triggered (record)

    Every delivered trigger is also kept as a record so callers can
    wait_for_trigger() from another thread.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)
        self._fired: list[dict] = []
        self._condition = threading.Condition()

    def __enter__(self) -> "TriggerSimulator":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self._client.close()

    @property
    def fired(self) -> list[dict]:
        with self._condition:
            return list(self._fired)

    def _record(self, trigger_type: str, **data: Any) -> dict:
        record = {"type": trigger_type, "timestamp": time.time(), **data}
        with self._condition:
            self._fired.append(record)
            self._condition.notify_all()
        return record

    @staticmethod
    def webhook_url(path: str) -> str:
        """Absolute URLs and '/...' paths are used as given; bare names live under /webhook/."""
        if path.startswith(("http://", "https://", "/")):
            return path
        return "/webhook/" + path

    def trigger_webhook(
        self,
        path: str = "test",
        method: str = "POST",
        headers: Optional[dict] = None,
        body: Any = None,
        query: Optional[dict] = None,
    ) -> dict:
        """
        Send a webhook request and return the response.

        Returns:
            {'status': int, 'headers': dict, 'data': parsed body}

        Raises:
            TriggerError: the request could not be sent
        """
        method = method.upper()
        url = self.webhook_url(path)
        request = {"method": method, "url": url, "headers": headers or {}, "body": body, "query": query or {}}

        try:
            response = self._client.request(
                method,
                url,
                headers=headers,
                params=query,
                json=body if method not in BODYLESS_METHODS else None,
            )
        except httpx.HTTPError as e:
            self.emit("webhook:error", request, e)
            raise TriggerError("webhook", str(e)) from e

        result = {
            "status": response.status_code,
            "headers": dict(response.headers),
            "data": _safe_json(response),
        }
        logger.debug("Webhook %s %s -> %s", method, url, response.status_code)
        self.emit("webhook:triggered", self._record("webhook", request=request, response=result))
        return result

    def _post(self, trigger_type: str, payload: dict) -> Any:
        try:
            response = self._client.post(f"/_trigger/{trigger_type}", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TriggerError(trigger_type, str(e)) from e
        return _safe_json(response)

    def trigger_email(
        self,
        sender: str,
        to: str,
        subject: str,
        body: str = "",
        html: Optional[str] = None,
        attachments: Optional[list] = None,
    ) -> dict:
        """Deliver an email to the virtual service's inbox; returns the email sent."""
        email = {
            "from": sender,
            "to": to,
            "subject": subject,
            "text": body,
            "html": html if html is not None else body,
            "attachments": attachments or [],
            "date": datetime.now(timezone.utc).isoformat(),
            "messageId": f"<{int(time.time() * 1000)}@test.example.com>",
            "headers": {"X-Test-Email": "true"},
        }
        response = self._post("email", email)
        self.emit("email:triggered", self._record("email", email=email, response=response))
        return email

    def trigger_filesystem(
        self,
        node_name: str,
        event: str,
        file_path: str,
        content: Optional[str] = None,
    ) -> dict:
        """Report a file create, update or delete for a file trigger node."""
        if event not in FILESYSTEM_EVENTS:
            raise ValueError(f"Unknown file system event '{event}'; expected one of {FILESYSTEM_EVENTS}")

        payload = {
            "nodeName": node_name,
            "event": {
                "type": event,
                "path": file_path,
                "filename": PurePath(file_path).name,
                "timestamp": int(time.time() * 1000),
                "content": content,
            },
        }
        response = self._post("filesystem", payload)
        self.emit("filesystem:triggered", self._record("filesystem", event=payload, response=response))
        return payload

    def fire(self, trigger: TriggerSpec) -> Optional[dict]:
        """
        Deliver a declared trigger.

        Schedule triggers have nothing to deliver; their data reaches the
        workflow through the prepared fixture.

        Raises:
            TriggerError: delivery failed or a webhook answered with a status
                other than config['expectedStatus']
        """
        config = trigger.config or {}

        if trigger.type == "webhook":
            result = self.trigger_webhook(
                path=config.get("path") or trigger.node_name or "test",
                method=config.get("method", "POST"),
                headers=config.get("headers"),
                body=config.get("body"),
                query=config.get("query"),
            )
            expected_status = config.get("expectedStatus")
            if expected_status is not None and result["status"] != int(expected_status):
                raise TriggerError(
                    "webhook", f"expected status {expected_status}, got {result['status']}"
                )
            return result

        if trigger.type == "email":
            return self.trigger_email(
                sender=config.get("from", "test@example.com"),
                to=config.get("to", "workflow@example.com"),
                subject=config.get("subject", "Test Email"),
                body=config.get("body", ""),
                html=config.get("html"),
                attachments=config.get("attachments"),
            )

        if trigger.type == "filesystem":
            return self.trigger_filesystem(
                node_name=trigger.node_name or "File Trigger",
                event=config.get("event", "create"),
                file_path=config.get("path", "/tmp/test-file.txt"),
                content=config.get("content"),
            )

        if trigger.type == "schedule":
            logger.debug("Schedule trigger needs no delivery")
            return None

        raise TriggerError(trigger.type, "unsupported trigger type")

    def wait_for_trigger(self, trigger_type: str, timeout: float = 5.0) -> dict:
        """
        Block until a trigger of the given type has been delivered.

        Returns:
            The earliest record of that type

        Raises:
            TriggerError: none was delivered within timeout seconds
        """
        def first():
            return next((r for r in self._fired if r["type"] == trigger_type), None)

        with self._condition:
            if not self._condition.wait_for(lambda: first() is not None, timeout=timeout):
                raise TriggerError(trigger_type, f"timeout waiting for trigger after {timeout}s")
            return first()

    def cleanup(self):
        """Forget delivered triggers and clear the service's trigger and webhook handlers."""
        with self._condition:
            self._fired.clear()
        try:
            self._client.post("/_trigger/clear")
        except httpx.HTTPError as e:
            logger.warning("Trigger cleanup failed: %s", e)

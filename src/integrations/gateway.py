"""Inbound provider webhook handling.

Per request: received → verified → classified → dispatched → acknowledged.

Once an event has been classified the provider always gets a 200; handler
failures are logged (and echoed in an ``error`` field for diagnostics) but
never turned into a non-2xx, because providers retry non-2xx deliveries
and the next manual sync reconciles anything a failed handler missed.

The handler runs as its own task.  The gateway waits for it for at most
``ack_timeout`` seconds; past that the acknowledgment goes out and the
task keeps running in the background.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from src.integrations.base import EventKind, ProviderAdapter, WebhookEvent
from src.integrations.errors import SequenceConflict, SignatureInvalid, UnknownProvider
from src.integrations.importer import WorkoutImporter
from src.integrations.store.base import IntegrationStore
from src.integrations.tokens import TokenManager
from src.models.base import utc_now

logger = logging.getLogger("ritual.integrations.webhooks")


@dataclass
class WebhookAck:
    """HTTP response the router sends back to the provider."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


class WebhookGateway:
    """Verifies, classifies and dispatches provider webhook deliveries."""

    def __init__(
        self,
        store: IntegrationStore,
        adapters: dict[str, ProviderAdapter],
        tokens: TokenManager,
        importer: WorkoutImporter,
        secrets: dict[str, str],
        ack_timeout: float = 5.0,
        require_signature: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._adapters = adapters
        self._tokens = tokens
        self._importer = importer
        self._secrets = secrets
        self._ack_timeout = ack_timeout
        self._require_signature = require_signature
        self._clock = clock
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of handler tasks still running after their ack went out."""
        return len(self._pending)

    async def receive(
        self, provider: str, raw_body: bytes, signature: str | None
    ) -> WebhookAck:
        """Process one delivery.

        Raises:
            UnknownProvider: No adapter is registered for ``provider``.
        """
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise UnknownProvider(provider, list(self._adapters))
        logger.debug("[%s] webhook received (%d bytes)", provider, len(raw_body))

        # --- verified ---
        try:
            self._verify(adapter, raw_body, signature)
        except SignatureInvalid as exc:
            logger.warning("[%s] webhook rejected: %s", provider, exc)
            return WebhookAck(401, {"error": str(exc)})

        # --- classified ---
        try:
            payload = json.loads(raw_body)
        except ValueError:
            logger.warning("[%s] webhook body is not valid JSON", provider)
            return WebhookAck(400, {"error": "Invalid JSON payload"})
        if not isinstance(payload, dict):
            return WebhookAck(400, {"error": "Payload must be a JSON object"})

        event = adapter.parse_webhook_event(payload)
        if event is None:
            logger.warning("[%s] webhook payload has no event type", provider)
            return WebhookAck(400, {"error": "Missing event type"})

        if event.kind is EventKind.UNRECOGNIZED:
            logger.info("[%s] ignoring unrecognized event type %r", provider, event.event_type)
            return WebhookAck(200, {"received": True})
        logger.info(
            "[%s] webhook classified: %s (user %s)",
            provider,
            event.event_type,
            event.external_user_id,
        )

        # --- dispatched ---
        task = asyncio.create_task(self._handle(adapter, event))
        self._pending.add(task)
        task.add_done_callback(self._on_done)

        body: dict[str, Any] = {"received": True}
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self._ack_timeout)
        except asyncio.TimeoutError:
            logger.info(
                "[%s] %s handler still running after %.1fs; acknowledging",
                provider,
                event.event_type,
                self._ack_timeout,
            )
        except Exception as exc:
            # Already logged by _on_done; the provider still gets its 200.
            body["error"] = str(exc) or exc.__class__.__name__

        # --- acknowledged ---
        logger.debug("[%s] webhook acknowledged", provider)
        return WebhookAck(200, body)

    def _verify(
        self, adapter: ProviderAdapter, raw_body: bytes, signature: str | None
    ) -> None:
        """Raise SignatureInvalid unless the delivery may be processed.

        A signature is checked only when a shared secret is configured and
        the delivery carries the header.  Every other delivery passes,
        loudly, unless ``require_signature`` is set.
        """
        provider = adapter.PROVIDER
        secret = self._secrets.get(provider, "")
        if not secret:
            logger.warning(
                "[%s] webhook secret not configured; accepting UNVERIFIED payload. "
                "Do not run this way in production.",
                provider,
            )
            return
        if not signature:
            if self._require_signature:
                raise SignatureInvalid(f"Missing {adapter.SIGNATURE_HEADER} header")
            logger.warning(
                "[%s] delivery has no %s header; accepting UNVERIFIED payload",
                provider,
                adapter.SIGNATURE_HEADER,
            )
            return
        if not adapter.verify_webhook_signature(raw_body, signature, secret):
            raise SignatureInvalid("Invalid signature")
        logger.debug("[%s] webhook verified", provider)

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait for background handlers at shutdown."""
        if not self._pending:
            return
        logger.info("Waiting for %d webhook handler(s) to finish", len(self._pending))
        _, still_running = await asyncio.wait(list(self._pending), timeout=timeout)
        for task in still_running:
            task.cancel()

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Webhook handler failed: %s", exc, exc_info=exc)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle(self, adapter: ProviderAdapter, event: WebhookEvent) -> None:
        provider = event.provider
        if not event.external_user_id:
            logger.warning("[%s] %s event without a user id", provider, event.event_type)
            return

        record = await self._store.find_integration_by_external_id(
            provider, event.external_user_id
        )
        if record is None:
            logger.warning(
                "[%s] no integration for external user %s", provider, event.external_user_id
            )
            return

        access_token = await self._tokens.with_valid_token(record)
        day = (event.occurred_at or self._clock()).astimezone(timezone.utc).date()

        if event.kind is EventKind.WORKOUT:
            workouts = await adapter.fetch_workouts(access_token, day, day)
            imported = 0
            for workout in workouts:
                try:
                    result = await self._importer.import_workout(record.user_id, workout)
                except SequenceConflict as exc:
                    logger.error("[%s] %s", provider, exc)
                    continue
                imported += result.imported
            logger.info(
                "[%s] %s for user %s: %d workout(s) on %s, %d new",
                provider,
                event.event_type,
                record.user_id,
                len(workouts),
                day,
                imported,
            )

        elif event.kind is EventKind.RECOVERY:
            snapshot = await adapter.fetch_recovery(access_token, day)
            if snapshot is None or snapshot.is_empty:
                logger.info("[%s] no recovery data for %s", provider, day)
                return
            latest = await self._store.latest_reflection_for_date(record.user_id, day)
            if latest is None:
                logger.info(
                    "[%s] no reflection on %s for user %s; recovery not attached",
                    provider,
                    day,
                    record.user_id,
                )
                return
            await self._store.update_reflection_recovery(latest.id, snapshot)
            logger.info(
                "[%s] attached recovery to reflection %s (user %s)",
                provider,
                latest.id,
                record.user_id,
            )

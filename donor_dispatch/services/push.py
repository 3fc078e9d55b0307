"""
Push delivery for blood request alerts.

The push provider is an opaque multicast primitive: it takes up to 500 device
tokens and a payload and returns one result per token, in submission order.
DispatchBatcher chunks a notify-list into provider-sized batches, sends the
batches with bounded parallelism and aggregates per-token outcomes.

Setup (Firebase Cloud Messaging):
1. Create a service account in the Firebase console (Project settings ->
   Service accounts -> Generate new private key).
2. Set in .env, either:
   FIREBASE_SERVICE_ACCOUNT_JSON='{"type": "service_account", ...}'
   or
   FIREBASE_CREDENTIALS_PATH=/path/to/service-account.json

Without credentials the LoggingPushProvider is used and every token is
reported as failed with "push_not_configured".
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import firebase_admin
from firebase_admin import credentials, messaging

from donor_dispatch.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# Documented FCM multicast ceiling
PUSH_MULTICAST_LIMIT = 500

# Provider error codes that mean the token will never work again
STALE_TOKEN_ERRORS = {"UNREGISTERED", "NOT_FOUND", "INVALID_ARGUMENT"}


@dataclass
class TokenResult:
    token: str
    success: bool
    error_code: Optional[str] = None
    message_id: Optional[str] = None


@dataclass
class PushPayload:
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    # Per-token extras (recipient id, login flag, notification id)
    token_data: Dict[str, Dict[str, str]] = field(default_factory=dict)


@dataclass
class DispatchOutcome:
    success_count: int = 0
    failure_count: int = 0
    batches: int = 0
    results: List[TokenResult] = field(default_factory=list)

    @property
    def failed_tokens(self) -> List[str]:
        return [r.token for r in self.results if not r.success]

    @property
    def stale_tokens(self) -> List[str]:
        return [r.token for r in self.results if not r.success and r.error_code in STALE_TOKEN_ERRORS]


class PushProvider(ABC):
    """Multicast push primitive: one call per batch of at most 500 tokens."""

    @abstractmethod
    async def send(
        self,
        tokens: Sequence[str],
        title: str,
        body: str,
        data: Dict[str, str],
        token_data: Optional[Dict[str, Dict[str, str]]] = None,
    ) -> List[TokenResult]:
        """Return one TokenResult per token, in the order the tokens were given."""

    def is_configured(self) -> bool:
        return True


class LoggingPushProvider(PushProvider):
    """Stand-in provider when no push credentials are configured."""

    async def send(self, tokens, title, body, data, token_data=None) -> List[TokenResult]:
        logger.warning(f"Push not configured - would send '{title}' to {len(tokens)} devices")
        return [TokenResult(token=t, success=False, error_code="push_not_configured") for t in tokens]

    def is_configured(self) -> bool:
        return False


class FcmPushProvider(PushProvider):
    """
    Firebase Cloud Messaging via firebase-admin.

    Messages are data-only so the device app always receives them in its
    message handler and can apply its visibility policy before showing
    anything. firebase-admin is synchronous; calls run in a worker thread.
    """

    def __init__(self, app: firebase_admin.App, channel_id: str = "blood_requests"):
        self.app = app
        self.channel_id = channel_id

    @classmethod
    def from_settings(cls) -> "FcmPushProvider":
        if settings.firebase_service_account_json:
            service_account = json.loads(settings.firebase_service_account_json)
            # Env vars usually carry the key with escaped newlines
            if service_account.get("private_key"):
                service_account["private_key"] = service_account["private_key"].replace("\\n", "\n")
            cred = credentials.Certificate(service_account)
        else:
            cred = credentials.Certificate(settings.firebase_credentials_path)

        try:
            app = firebase_admin.get_app()
        except ValueError:
            app = firebase_admin.initialize_app(cred)
        logger.info("Firebase messaging initialized")
        return cls(app, channel_id=settings.notification_channel_id)

    def _android_config(self) -> messaging.AndroidConfig:
        return messaging.AndroidConfig(priority="high")

    def _send_sync(self, tokens, title, body, data, token_data) -> List[TokenResult]:
        shared = {**data, "title": title, "body": body, "channelId": self.channel_id}

        if token_data:
            messages = [
                messaging.Message(
                    token=token,
                    data={**shared, **token_data.get(token, {})},
                    android=self._android_config(),
                )
                for token in tokens
            ]
            response = messaging.send_each(messages, app=self.app)
        else:
            message = messaging.MulticastMessage(
                tokens=list(tokens),
                data=shared,
                android=self._android_config(),
            )
            response = messaging.send_each_for_multicast(message, app=self.app)

        results = []
        for token, resp in zip(tokens, response.responses):
            if resp.success:
                results.append(TokenResult(token=token, success=True, message_id=resp.message_id))
            else:
                results.append(TokenResult(token=token, success=False, error_code=_error_code(resp.exception)))
        return results

    async def send(self, tokens, title, body, data, token_data=None) -> List[TokenResult]:
        if len(tokens) > PUSH_MULTICAST_LIMIT:
            raise ValueError(f"FCM accepts at most {PUSH_MULTICAST_LIMIT} tokens per call, got {len(tokens)}")
        return await asyncio.to_thread(self._send_sync, list(tokens), title, body, data, token_data)


def _error_code(exc: Optional[Exception]) -> str:
    if exc is None:
        return "unknown"
    if isinstance(exc, messaging.UnregisteredError):
        return "UNREGISTERED"
    return getattr(exc, "code", None) or type(exc).__name__


class DispatchBatcher:
    """Sends one payload to a notify-list in provider-sized batches."""

    def __init__(
        self,
        provider: PushProvider,
        batch_size: int = PUSH_MULTICAST_LIMIT,
        max_concurrent_batches: int = 4,
    ):
        if not 0 < batch_size <= PUSH_MULTICAST_LIMIT:
            raise ValueError(f"batch_size must be between 1 and {PUSH_MULTICAST_LIMIT}")
        self.provider = provider
        self.batch_size = batch_size
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent_batches))

    @staticmethod
    def collect_tokens(notify_list) -> List[str]:
        """Tokens in notify-list order, empties dropped, first occurrence kept."""
        seen = set()
        tokens = []
        for entry in notify_list:
            token = (entry.push_token or "").strip()
            if not token or token in seen:
                continue
            seen.add(token)
            tokens.append(token)
        return tokens

    def chunk(self, tokens: List[str]) -> List[List[str]]:
        return [tokens[i:i + self.batch_size] for i in range(0, len(tokens), self.batch_size)]

    async def _send_batch(self, index: int, batch: List[str], payload: PushPayload) -> List[TokenResult]:
        token_data = {t: payload.token_data[t] for t in batch if t in payload.token_data}
        async with self._semaphore:
            try:
                results = await self.provider.send(
                    batch, payload.title, payload.body, payload.data, token_data or None
                )
            except Exception as e:
                # Whole batch lost; the other batches still go out
                code = getattr(e, "code", None) or type(e).__name__
                logger.error(f"Push batch {index} ({len(batch)} tokens) failed: {e}")
                return [TokenResult(token=t, success=False, error_code=code) for t in batch]

        # One result per token of this batch, in batch order; extras and repeats are dropped
        wanted = set(batch)
        by_token = {}
        for result in results:
            if result.token in wanted and result.token not in by_token:
                by_token[result.token] = result
        if len(results) != len(batch) or len(by_token) != len(batch):
            logger.error(
                f"Push batch {index}: provider returned {len(results)} results "
                f"({len(by_token)} usable) for {len(batch)} tokens"
            )
        return [
            by_token.get(t) or TokenResult(token=t, success=False, error_code="missing_result")
            for t in batch
        ]

    async def dispatch(self, notify_list, payload: PushPayload) -> DispatchOutcome:
        tokens = self.collect_tokens(notify_list)
        if not tokens:
            logger.info("No push tokens to notify")
            return DispatchOutcome()

        batches = self.chunk(tokens)
        batch_results = await asyncio.gather(
            *(self._send_batch(i, batch, payload) for i, batch in enumerate(batches))
        )

        outcome = DispatchOutcome(batches=len(batches))
        for results in batch_results:
            for result in results:
                outcome.results.append(result)
                if result.success:
                    outcome.success_count += 1
                else:
                    outcome.failure_count += 1
                    logger.warning(f"Push failed for token {result.token[:10]}...: {result.error_code}")

        logger.info(
            f"Sent to {len(tokens)} devices in {len(batches)} batches: "
            f"{outcome.success_count} success, {outcome.failure_count} failed"
        )
        return outcome


_provider: Optional[PushProvider] = None


def get_push_provider() -> PushProvider:
    """FastAPI dependency: the process-wide push provider, created on first use."""
    global _provider
    if _provider is None:
        if settings.firebase_configured():
            _provider = FcmPushProvider.from_settings()
        else:
            logger.warning("Firebase credentials not configured - push notifications disabled")
            _provider = LoggingPushProvider()
    return _provider

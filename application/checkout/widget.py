"""
Hosted checkout widget capability and its script loader.

`CheckoutWidget.open(config)` resolves to exactly one of WidgetSuccess,
WidgetFailure or WidgetDismissed. The real widget hands the processor's
options dict to a host (browser bridge, webview) and waits for its
callbacks; the fake resolves immediately.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, Union, runtime_checkable

import httpx

from core.logging_config import get_logger
from core.settings import payment_settings

logger = get_logger(__name__)


class WidgetLoadError(Exception):
    """Checkout script could not be loaded."""


@dataclass(frozen=True)
class WidgetConfig:
    key: str
    amount: int
    currency: str
    order_id: str
    name: str
    description: str
    prefill: Dict[str, str] = field(default_factory=dict)
    theme_color: Optional[str] = None

    def to_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "key": self.key,
            "amount": self.amount,
            "currency": self.currency,
            "order_id": self.order_id,
            "name": self.name,
            "description": self.description,
            "prefill": dict(self.prefill),
        }
        if self.theme_color:
            options["theme"] = {"color": self.theme_color}
        return options


@dataclass(frozen=True)
class WidgetSuccess:
    order_id: str
    payment_id: str
    signature: str


@dataclass(frozen=True)
class WidgetFailure:
    order_id: str
    description: str
    code: Optional[str] = None


@dataclass(frozen=True)
class WidgetDismissed:
    order_id: str


WidgetOutcome = Union[WidgetSuccess, WidgetFailure, WidgetDismissed]


@runtime_checkable
class CheckoutWidget(Protocol):
    async def open(self, config: WidgetConfig) -> WidgetOutcome: ...


class WidgetHost(Protocol):
    """Renders the hosted checkout and reports back through the callbacks."""

    def open(self, options: Dict[str, Any], on_payment_failed: Callable[[Dict[str, Any]], None]) -> None: ...


class RazorpayCheckoutWidget:
    """
    Hosted checkout driven through a WidgetHost.

    Options carry `handler(response)` and `modal.ondismiss()`; the
    `payment.failed` event goes to `on_payment_failed`. The first callback
    wins, later ones are ignored.
    """

    def __init__(self, host: WidgetHost):
        self._host = host

    async def open(self, config: WidgetConfig) -> WidgetOutcome:
        loop = asyncio.get_running_loop()
        outcome: asyncio.Future = loop.create_future()

        def _settle(result: WidgetOutcome) -> None:
            if not outcome.done():
                loop.call_soon_threadsafe(_set, result)

        def _set(result: WidgetOutcome) -> None:
            if not outcome.done():
                outcome.set_result(result)

        def handler(response: Dict[str, Any]) -> None:
            _settle(
                WidgetSuccess(
                    order_id=str(response.get("razorpay_order_id") or config.order_id),
                    payment_id=str(response.get("razorpay_payment_id", "")),
                    signature=str(response.get("razorpay_signature", "")),
                )
            )

        def ondismiss() -> None:
            _settle(WidgetDismissed(order_id=config.order_id))

        def on_payment_failed(response: Dict[str, Any]) -> None:
            error = response.get("error") or {}
            metadata = error.get("metadata") or {}
            _settle(
                WidgetFailure(
                    order_id=str(metadata.get("order_id") or config.order_id),
                    description=str(error.get("description") or "Payment failed"),
                    code=error.get("code"),
                )
            )

        options = config.to_options()
        options["handler"] = handler
        options["modal"] = {"ondismiss": ondismiss}
        self._host.open(options, on_payment_failed)
        return await outcome


class FakeCheckoutWidget:
    """
    Deterministic widget for tests and local runs.

    mode: "success" | "failure" | "dismiss". On success `complete(config)`
    supplies (payment_id, signature), e.g. the fake processor's
    `complete_checkout`.
    """

    def __init__(
        self,
        mode: str = "success",
        *,
        complete: Optional[Callable[[WidgetConfig], Tuple[str, str]]] = None,
        failure_description: str = "Payment failed",
        callback_order_id: Optional[str] = None,
    ):
        self.mode = mode
        self._complete = complete
        self.failure_description = failure_description
        self.callback_order_id = callback_order_id
        self.opened: list[WidgetConfig] = []

    async def open(self, config: WidgetConfig) -> WidgetOutcome:
        self.opened.append(config)
        order_id = self.callback_order_id or config.order_id
        if self.mode == "dismiss":
            return WidgetDismissed(order_id=order_id)
        if self.mode == "failure":
            return WidgetFailure(order_id=order_id, description=self.failure_description)
        if self._complete is None:
            return WidgetSuccess(order_id=order_id, payment_id="pay_fake", signature="")
        payment_id, signature = self._complete(config)
        return WidgetSuccess(order_id=order_id, payment_id=payment_id, signature=signature)


class WidgetLoader:
    """
    Loads the checkout script once per process.

    Concurrent callers share one in-flight load; a failed load is dropped so
    the next call tries again.
    """

    _instance: Optional["WidgetLoader"] = None

    def __init__(
        self,
        script_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        cfg = payment_settings.checkout
        self.script_url = script_url or cfg.script_url
        self.timeout = timeout if timeout is not None else cfg.script_timeout
        self._transport = transport
        self._inflight: Optional[asyncio.Future] = None
        self._script: Optional[str] = None
        self.fetch_count = 0

    @classmethod
    def instance(cls) -> "WidgetLoader":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    @property
    def loaded(self) -> bool:
        return self._script is not None

    async def load(self) -> str:
        if self._script is not None:
            return self._script
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._fetch())
        inflight = self._inflight
        try:
            script = await asyncio.shield(inflight)
        except WidgetLoadError:
            if self._inflight is inflight:
                self._inflight = None
            raise
        self._script = script
        self._inflight = None
        return script

    async def _fetch(self) -> str:
        self.fetch_count += 1
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.script_url)
        except httpx.HTTPError as exc:
            logger.warning("checkout_script_load_failed", url=self.script_url, error=str(exc))
            raise WidgetLoadError(f"Could not load checkout script: {exc}") from exc
        if response.status_code != 200 or not response.text:
            logger.warning("checkout_script_load_failed", url=self.script_url, status_code=response.status_code)
            raise WidgetLoadError(f"Checkout script returned HTTP {response.status_code}")
        logger.info("checkout_script_loaded", url=self.script_url, size=len(response.text))
        return response.text

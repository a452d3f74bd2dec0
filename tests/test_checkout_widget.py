import asyncio

import httpx
import pytest

from application.checkout.widget import (
    RazorpayCheckoutWidget,
    WidgetConfig,
    WidgetDismissed,
    WidgetFailure,
    WidgetLoader,
    WidgetLoadError,
    WidgetSuccess,
)

CONFIG = WidgetConfig(
    key="rzp_test_key",
    amount=129900,
    currency="INR",
    order_id="order_1",
    name="Glam Essentials",
    description="Payment for your order",
    prefill={"name": "Asha Rao", "email": "asha@example.com", "contact": "9876543210"},
    theme_color="#8B5CF6",
)


class _ScriptedHost:
    """Calls back from inside open(), the way a synchronous bridge would."""

    def __init__(self, script):
        self.script = script
        self.options = None

    def open(self, options, on_payment_failed):
        self.options = options
        self.script(options, on_payment_failed)


def test_options_match_the_hosted_checkout_contract():
    options = CONFIG.to_options()
    assert options == {
        "key": "rzp_test_key",
        "amount": 129900,
        "currency": "INR",
        "order_id": "order_1",
        "name": "Glam Essentials",
        "description": "Payment for your order",
        "prefill": {"name": "Asha Rao", "email": "asha@example.com", "contact": "9876543210"},
        "theme": {"color": "#8B5CF6"},
    }


@pytest.mark.asyncio
async def test_handler_resolves_success():
    host = _ScriptedHost(
        lambda options, failed: options["handler"](
            {"razorpay_order_id": "order_1", "razorpay_payment_id": "pay_1", "razorpay_signature": "sig"}
        )
    )

    outcome = await RazorpayCheckoutWidget(host).open(CONFIG)

    assert outcome == WidgetSuccess(order_id="order_1", payment_id="pay_1", signature="sig")
    assert host.options["amount"] == 129900
    assert callable(host.options["modal"]["ondismiss"])


@pytest.mark.asyncio
async def test_payment_failed_resolves_failure():
    host = _ScriptedHost(
        lambda options, failed: failed(
            {"error": {"code": "BAD_REQUEST_ERROR", "description": "Card declined", "metadata": {"order_id": "order_1"}}}
        )
    )

    outcome = await RazorpayCheckoutWidget(host).open(CONFIG)

    assert outcome == WidgetFailure(order_id="order_1", description="Card declined", code="BAD_REQUEST_ERROR")


@pytest.mark.asyncio
async def test_first_callback_wins():
    def script(options, failed):
        options["modal"]["ondismiss"]()
        options["handler"]({"razorpay_payment_id": "pay_1", "razorpay_signature": "sig"})

    outcome = await RazorpayCheckoutWidget(_ScriptedHost(script)).open(CONFIG)

    assert outcome == WidgetDismissed(order_id="order_1")


@pytest.mark.asyncio
async def test_callback_from_another_thread():
    def script(options, failed):
        loop = asyncio.get_running_loop()
        loop.run_in_executor(None, options["modal"]["ondismiss"])

    outcome = await asyncio.wait_for(RazorpayCheckoutWidget(_ScriptedHost(script)).open(CONFIG), timeout=5)

    assert outcome == WidgetDismissed(order_id="order_1")


# ----- loader -----

@pytest.mark.asyncio
async def test_concurrent_loads_share_one_fetch():
    calls = []

    async def handler(request):
        calls.append(str(request.url))
        await asyncio.sleep(0.01)
        return httpx.Response(200, text="/* checkout */")

    loader = WidgetLoader("https://checkout.test/v1/checkout.js", transport=httpx.MockTransport(handler))

    scripts = await asyncio.gather(*(loader.load() for _ in range(5)))

    assert scripts == ["/* checkout */"] * 5
    assert calls == ["https://checkout.test/v1/checkout.js"]
    assert loader.fetch_count == 1
    assert loader.loaded is True

    await loader.load()
    assert loader.fetch_count == 1


@pytest.mark.asyncio
async def test_failed_load_is_retried_on_next_call():
    responses = [httpx.Response(500), httpx.Response(200, text="/* checkout */")]
    loader = WidgetLoader(
        "https://checkout.test/v1/checkout.js",
        transport=httpx.MockTransport(lambda request: responses.pop(0)),
    )

    with pytest.raises(WidgetLoadError):
        await loader.load()
    assert loader.loaded is False

    assert await loader.load() == "/* checkout */"
    assert loader.fetch_count == 2


@pytest.mark.asyncio
async def test_network_error_is_a_load_error():
    def handler(request):
        raise httpx.ConnectError("blocked", request=request)

    loader = WidgetLoader("https://checkout.test/v1/checkout.js", transport=httpx.MockTransport(handler))

    with pytest.raises(WidgetLoadError):
        await loader.load()


def test_process_wide_loader_instance():
    WidgetLoader.reset_instance()
    try:
        assert WidgetLoader.instance() is WidgetLoader.instance()
    finally:
        WidgetLoader.reset_instance()

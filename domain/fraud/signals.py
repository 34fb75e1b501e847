"""
Fraud signal families.

Each family is an independent coroutine taking a SignalInput and returning a
SignalResult; the scorer only sums them. History queries always exclude the
order being scored, which is counted as the current attempt instead.
"""
from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable

from .entity import FraudThresholds, PaymentContext, SignalResult
from .repository import FraudHistoryRepository


@dataclass(frozen=True)
class SignalInput:
    context: PaymentContext
    history: FraudHistoryRepository
    now: datetime
    thresholds: FraudThresholds


Signal = Callable[[SignalInput], Awaitable[SignalResult]]

HEADLESS_MARKERS = ("headless", "phantom", "selenium")
BOT_MARKERS = ("bot", "crawler", "spider")
DISTANT_STATES = frozenset({"Kashmir", "Kerala", "Tamil Nadu", "West Bengal"})
RAPID_SUCCESSION_WINDOW = timedelta(seconds=60)


async def check_amount(inp: SignalInput) -> SignalResult:
    """Deviation from the 30-day average plus absolute amount limits."""
    ctx, limits = inp.context, inp.thresholds
    result = SignalResult()
    amount = ctx.amount

    recent = await inp.history.orders_since(
        ctx.email, inp.now - timedelta(days=30), exclude_order_id=ctx.order_id, limit=50
    )
    if recent:
        average = sum((o.total_amount for o in recent), Decimal("0")) / len(recent)
        if average > 0 and amount > average * 10:
            result.add(25, "HIGH_AMOUNT_DEVIATION", f"Amount {amount} is 10x higher than average {average:.2f}")
        elif average > 0 and amount > average * 5:
            result.add(15, "MEDIUM_AMOUNT_DEVIATION", f"Amount {amount} is 5x higher than average {average:.2f}")
        if amount % limits.round_amount_unit == 0 and amount > limits.round_amount_min:
            result.add(10, "ROUND_AMOUNT", "Suspiciously round payment amount")

    if amount > limits.very_high_amount:
        result.add(20, "VERY_HIGH_AMOUNT", "Very high payment amount")
    elif amount > limits.high_amount:
        result.add(10, "HIGH_AMOUNT", "High payment amount")

    if amount < limits.card_testing_amount:
        result.add(15, "CARD_TESTING", "Very small amount - possible card testing")
    return result


async def check_velocity(inp: SignalInput) -> SignalResult:
    """Order counts in the last hour / day and orders placed under a minute apart."""
    ctx, now = inp.context, inp.now
    result = SignalResult()

    last_day = await inp.history.orders_since(
        ctx.email, now - timedelta(hours=24), exclude_order_id=ctx.order_id
    )
    hour_start = now - timedelta(hours=1)
    last_hour = [o for o in last_day if o.created_at >= hour_start]

    hour_count = len(last_hour) + 1
    day_count = len(last_day) + 1

    if hour_count > 5:
        result.add(30, "HIGH_VELOCITY_HOUR", f"{hour_count} orders in last hour")
    elif hour_count > 2:
        result.add(15, "MEDIUM_VELOCITY_HOUR", f"{hour_count} orders in last hour")

    if day_count > 20:
        result.add(25, "HIGH_VELOCITY_DAY", f"{day_count} orders in last 24 hours")
    elif day_count > 10:
        result.add(15, "MEDIUM_VELOCITY_DAY", f"{day_count} orders in last 24 hours")

    stamps = [o.created_at for o in last_hour]
    if ctx.order_created_at is not None:
        stamps.append(ctx.order_created_at)
    stamps.sort(reverse=True)
    for newer, older in zip(stamps, stamps[1:]):
        if newer - older < RAPID_SUCCESSION_WINDOW:
            result.add(20, "RAPID_SUCCESSION", "Multiple orders within minutes")
            break
    return result


async def check_geography(inp: SignalInput) -> SignalResult:
    """Billing/shipping mismatch and shipping to a country new for this identity."""
    ctx = inp.context
    result = SignalResult()
    billing, shipping = ctx.billing_country, ctx.shipping_country

    if billing and shipping:
        if billing != shipping:
            result.add(
                15, "COUNTRY_MISMATCH",
                f"Billing ({billing}) and shipping ({shipping}) in different countries",
            )
        elif billing == "India":
            billing_state = (ctx.billing_address or {}).get("state")
            shipping_state = (ctx.shipping_address or {}).get("state")
            if (
                billing_state != shipping_state
                and billing_state in DISTANT_STATES
                and shipping_state in DISTANT_STATES
            ):
                result.add(10, "DISTANT_ADDRESSES", "Billing and shipping addresses in distant states")

    recent = await inp.history.orders_since(
        ctx.email, inp.now - timedelta(days=90), exclude_order_id=ctx.order_id, limit=20
    )
    if recent and shipping:
        seen = {o.shipping_country for o in recent if o.shipping_country}
        if shipping not in seen:
            result.add(10, "NEW_SHIPPING_COUNTRY", f"First time shipping to {shipping}")
    return result


async def check_identity(inp: SignalInput) -> SignalResult:
    """Disposable or aliased email, short local part, payment instrument churn."""
    ctx = inp.context
    result = SignalResult()
    email = ctx.email.lower()
    local, _, domain = email.partition("@")

    if domain in inp.thresholds.disposable_email_domains:
        result.add(20, "DISPOSABLE_EMAIL", "Using disposable email service")
    if "+" in email:
        result.add(5, "EMAIL_ALIAS", "Using email alias")
    base = re.sub(r"[._-]", "", re.sub(r"[0-9]+$", "", local))
    if len(base) < 5:
        result.add(10, "SHORT_EMAIL_PREFIX", "Very short email prefix")

    recent = await inp.history.payments_since(
        ctx.email, inp.now - timedelta(days=30), exclude_order_id=ctx.order_id, limit=10
    )
    methods = {p.payment_method for p in recent if p.payment_method}
    brands = {p.card_brand for p in recent if p.card_brand}
    if ctx.payment_method:
        methods.add(ctx.payment_method)
    if ctx.card_brand:
        brands.add(ctx.card_brand)
    if len(methods) > 3:
        result.add(15, "MULTIPLE_PAYMENT_METHODS", f"Used {len(methods)} different payment methods")
    if len(brands) > 2:
        result.add(10, "MULTIPLE_CARD_BRANDS", f"Used {len(brands)} different card brands")
    return result


def _is_private_ip(value: str) -> bool:
    try:
        return ipaddress.ip_address(value).is_private
    except ValueError:
        return False


async def check_device(inp: SignalInput) -> SignalResult:
    """Automation-like user agents and IP churn."""
    ctx = inp.context
    result = SignalResult()

    if ctx.user_agent:
        agent = ctx.user_agent.lower()
        if any(marker in agent for marker in HEADLESS_MARKERS):
            result.add(25, "HEADLESS_BROWSER", "Using headless browser")
        if any(marker in agent for marker in BOT_MARKERS):
            result.add(20, "BOT_USER_AGENT", "Bot-like user agent")
        if "msie" in agent and "6.0" in agent:
            result.add(15, "OLD_BROWSER", "Using very old browser")
    else:
        result.add(10, "NO_USER_AGENT", "No user agent provided")

    if ctx.ip_address:
        if _is_private_ip(ctx.ip_address):
            result.add(5, "PRIVATE_IP", "Using private IP address")
        recent = await inp.history.orders_since(
            ctx.email, inp.now - timedelta(days=7), exclude_order_id=ctx.order_id, limit=10
        )
        ips = {o.ip_address for o in recent if o.ip_address}
        if ips and ctx.ip_address not in ips:
            result.add(5, "IP_CHANGE", "New IP address for this email")
        if len(ips) > 5:
            result.add(15, "MULTIPLE_IPS", f"Used {len(ips)} different IP addresses recently")
    return result


async def check_patterns(inp: SignalInput) -> SignalResult:
    """Recent failed payments and refunds."""
    ctx, now = inp.context, inp.now
    result = SignalResult()

    failed = await inp.history.payments_since(
        ctx.email, now - timedelta(hours=24), status="failed", exclude_order_id=ctx.order_id
    )
    if len(failed) > 5:
        result.add(30, "MULTIPLE_FAILURES", f"{len(failed)} failed payments in 24 hours")
    elif len(failed) > 2:
        result.add(15, "SOME_FAILURES", f"{len(failed)} failed payments in 24 hours")

    refunds = await inp.history.count_refunds_since(ctx.email, now - timedelta(days=30))
    if refunds > 2:
        result.add(20, "MULTIPLE_REFUNDS", f"{refunds} refunds in last 30 days")
    return result


DEFAULT_SIGNALS: tuple[tuple[str, Signal], ...] = (
    ("amount", check_amount),
    ("velocity", check_velocity),
    ("geography", check_geography),
    ("identity", check_identity),
    ("device", check_device),
    ("pattern", check_patterns),
)

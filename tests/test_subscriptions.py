import asyncio

import pytest

from ble_settings_link.subscriptions import HandleSlot, Subscription, timer


def test_subscription_releases_exactly_once() -> None:
    released = []
    subscription = Subscription(lambda: released.append(1), label="test")

    assert subscription.remove() is True
    assert subscription.remove() is False
    assert released == [1]
    assert not subscription.active


def test_slot_replace_releases_previous_handle() -> None:
    released = []
    slot = HandleSlot("disconnect")
    first = Subscription(lambda: released.append("first"))
    second = Subscription(lambda: released.append("second"))

    slot.replace(first)
    slot.replace(second)

    assert released == ["first"]
    assert slot.handle is second
    assert slot


def test_slot_release_is_idempotent() -> None:
    released = []
    slot = HandleSlot("scan-timer")
    slot.replace(Subscription(lambda: released.append(1)))

    assert slot.release() is True
    assert slot.release() is False
    assert released == [1]
    assert not slot


@pytest.mark.asyncio
async def test_timer_fires_after_delay() -> None:
    fired = asyncio.Event()
    timer(0.01, fired.set)
    await asyncio.wait_for(fired.wait(), timeout=1.0)


@pytest.mark.asyncio
async def test_removed_timer_never_fires() -> None:
    fired = []
    handle = timer(0.02, lambda: fired.append(1))

    handle.remove()
    await asyncio.sleep(0.05)

    assert fired == []


@pytest.mark.asyncio
async def test_timer_awaits_coroutine_callbacks() -> None:
    done = asyncio.Event()

    async def callback() -> None:
        await asyncio.sleep(0)
        done.set()

    timer(0.01, callback)
    await asyncio.wait_for(done.wait(), timeout=1.0)

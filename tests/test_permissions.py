import asyncio

import pytest

from ble_settings_link.client.permissions import PermissionGate, PermissionStatus

from conftest import CountingChecker


@pytest.mark.asyncio
async def test_check_is_memoized_per_epoch() -> None:
    checker = CountingChecker()
    gate = PermissionGate(checker)

    assert await gate.check() is PermissionStatus.GRANTED
    assert await gate.check() is PermissionStatus.GRANTED
    assert checker.calls == 1

    gate.invalidate()
    assert gate.status is PermissionStatus.UNCHECKED
    await gate.check()
    assert checker.calls == 2


@pytest.mark.asyncio
async def test_concurrent_checks_share_one_platform_call() -> None:
    checker = CountingChecker()
    gate = PermissionGate(checker)

    results = await asyncio.gather(gate.check(), gate.check(), gate.check())

    assert set(results) == {PermissionStatus.GRANTED}
    assert checker.calls == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("answer", [False, None, "yes"])
async def test_anything_but_true_is_denied(answer) -> None:
    gate = PermissionGate(CountingChecker(answer))
    assert await gate.check() is PermissionStatus.DENIED


@pytest.mark.asyncio
async def test_checker_error_is_denied() -> None:
    async def checker():
        raise OSError("org.bluez not available")

    gate = PermissionGate(checker)
    assert await gate.check() is PermissionStatus.DENIED


@pytest.mark.asyncio
async def test_checker_timeout_is_denied() -> None:
    async def checker():
        await asyncio.sleep(1.0)
        return True

    gate = PermissionGate(checker, timeout=0.01)
    assert await gate.check() is PermissionStatus.DENIED


@pytest.mark.asyncio
async def test_result_from_previous_epoch_is_discarded() -> None:
    release = asyncio.Event()

    async def checker():
        await release.wait()
        return True

    gate = PermissionGate(checker)
    pending = asyncio.create_task(gate.check())
    await asyncio.sleep(0)
    gate.invalidate()
    release.set()

    assert await pending is PermissionStatus.UNCHECKED
    assert gate.status is PermissionStatus.UNCHECKED

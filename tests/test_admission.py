"""Unit tests for cooldown and daily quota admission."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeLedger
from story_relay.core.admission import AdmissionController, UserGate
from story_relay.exceptions import RepositoryError
from story_relay.models.domain import RequestRecord, User

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_controller(ledger: FakeLedger, cooldown: int = 60, limit: int = 3):
    return AdmissionController(ledger, cooldown, limit, clock=lambda: NOW)


class TestCooldown:
    @pytest.mark.asyncio
    async def test_new_user_is_admitted(self) -> None:
        controller = make_controller(FakeLedger())

        decision = await controller.can_proceed(User(id=1))

        assert decision.allowed is True
        assert decision.reason == ""

    @pytest.mark.asyncio
    async def test_denied_one_second_before_cooldown_ends(self) -> None:
        controller = make_controller(FakeLedger(), cooldown=60)
        user = User(id=1, last_active_at=NOW - timedelta(seconds=59))

        decision = await controller.can_proceed(user)

        assert decision.allowed is False
        assert "1 seconds" in decision.reason

    @pytest.mark.asyncio
    async def test_admitted_one_second_after_cooldown_ends(self) -> None:
        controller = make_controller(FakeLedger(), cooldown=60)
        user = User(id=1, last_active_at=NOW - timedelta(seconds=61))

        assert (await controller.can_proceed(user)).allowed is True

    @pytest.mark.asyncio
    async def test_wait_is_rounded_up(self) -> None:
        controller = make_controller(FakeLedger(), cooldown=10)
        user = User(id=1, last_active_at=NOW - timedelta(seconds=2.5))

        decision = await controller.can_proceed(user)

        assert decision.reason == "Please wait 8 seconds between downloads."

    @pytest.mark.asyncio
    async def test_cooldown_applies_to_premium_users(self) -> None:
        controller = make_controller(FakeLedger(), cooldown=60)
        user = User(id=1, role="admin", last_active_at=NOW - timedelta(seconds=5))

        assert (await controller.can_proceed(user)).allowed is False

    @pytest.mark.asyncio
    async def test_reason_is_localized(self) -> None:
        controller = make_controller(FakeLedger(), cooldown=60)
        user = User(id=1, language_code="ru", last_active_at=NOW - timedelta(seconds=30))

        decision = await controller.can_proceed(user)

        assert decision.reason == "Подождите 30 секунд между загрузками."


class TestDailyQuota:
    @pytest.mark.asyncio
    async def test_admitted_below_limit(self) -> None:
        controller = make_controller(FakeLedger(today=2), limit=3)

        assert (await controller.can_proceed(User(id=1))).allowed is True

    @pytest.mark.asyncio
    async def test_denied_at_limit(self) -> None:
        controller = make_controller(FakeLedger(today=3), limit=3)

        decision = await controller.can_proceed(User(id=1))

        assert decision.allowed is False
        assert "(3/3)" in decision.reason

    @pytest.mark.asyncio
    async def test_only_own_records_count(self) -> None:
        ledger = FakeLedger()
        for _ in range(3):
            await ledger.create(RequestRecord(user_id=2, input="someone"))
        controller = make_controller(ledger, limit=3)

        assert (await controller.can_proceed(User(id=1))).allowed is True
        assert (await controller.can_proceed(User(id=2))).allowed is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "user",
        [
            User(id=1, role="admin"),
            User(id=1, role="premium"),
            User(id=1, premium_expires_at=NOW + timedelta(days=1)),
        ],
    )
    async def test_premium_users_skip_quota(self, user: User) -> None:
        ledger = FakeLedger(today=100)
        ledger.fail_count = True
        controller = make_controller(ledger, limit=3)

        assert (await controller.can_proceed(user)).allowed is True

    @pytest.mark.asyncio
    async def test_expired_premium_is_counted(self) -> None:
        controller = make_controller(FakeLedger(today=3), limit=3)
        user = User(id=1, premium_expires_at=NOW - timedelta(seconds=1))

        assert (await controller.can_proceed(user)).allowed is False

    @pytest.mark.asyncio
    async def test_telegram_premium_does_not_lift_quota(self) -> None:
        controller = make_controller(FakeLedger(today=3), limit=3)
        user = User(id=1, is_telegram_premium=True)

        assert (await controller.can_proceed(user)).allowed is False

    @pytest.mark.asyncio
    async def test_ledger_failure_propagates(self) -> None:
        ledger = FakeLedger()
        ledger.fail_count = True
        controller = make_controller(ledger)

        with pytest.raises(RepositoryError):
            await controller.can_proceed(User(id=1))


class TestUserGate:
    @pytest.mark.asyncio
    async def test_same_user_shares_a_lock(self) -> None:
        gate = UserGate()

        assert await gate.get_lock(1) is await gate.get_lock(1)
        assert await gate.get_lock(1) is not await gate.get_lock(2)

    @pytest.mark.asyncio
    async def test_evicts_idle_locks_only(self) -> None:
        gate = UserGate(max_locks=2)
        held = await gate.get_lock(1)
        await held.acquire()
        await gate.get_lock(2)

        await gate.get_lock(3)

        assert len(gate) == 2
        assert await gate.get_lock(1) is held
        held.release()

    @pytest.mark.asyncio
    async def test_serializes_requests_of_one_user(self) -> None:
        gate = UserGate()
        order: list[str] = []

        async def run(tag: str) -> None:
            async with gate.hold(7):
                order.append(f"{tag}-start")
                await asyncio.sleep(0.01)
                order.append(f"{tag}-end")

        await asyncio.gather(run("a"), run("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_lock_with_pending_waiter_is_not_evicted(self) -> None:
        gate = UserGate(max_locks=1)
        first = await gate.get_lock(1)
        entered = asyncio.Event()

        async def queued() -> None:
            async with gate.hold(1):
                entered.set()

        async with gate.hold(1):
            waiter = asyncio.create_task(queued())
            await asyncio.sleep(0)

        # the waiter has been woken but has not run yet
        await gate.get_lock(2)

        assert await gate.get_lock(1) is first
        await waiter
        assert entered.is_set()

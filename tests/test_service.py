"""Tests for NotificationService read/delete tracking."""

import pytest

from clubnotify.core.errors import BackendError, NotAuthenticated, TenantNotFound
from clubnotify.db.models import NavigateAction, NotificationType


async def _seed(service, tenant_id="gym-1", count=3):
    return [
        await service.create(tenant_id, "info", f"Class {i}", f"Message {i}")
        for i in range(count)
    ]


class TestListing:
    @pytest.mark.asyncio
    async def test_newest_first(self, service):
        created = await _seed(service)
        listed = await service.list("gym-1", "alice")
        assert [n.id for n in listed] == [n.id for n in reversed(created)]

    @pytest.mark.asyncio
    async def test_empty_tenant_returns_empty(self, service):
        assert await service.list("gym-2", "alice") == []
        assert await service.unread_count("gym-2", "alice") == 0

    @pytest.mark.asyncio
    async def test_unknown_tenant_raises(self, service):
        with pytest.raises(TenantNotFound):
            await service.list("no-such-gym", "alice")

    @pytest.mark.asyncio
    async def test_tenant_isolation(self, service):
        a = await service.create("gym-1", "info", "Pool closed", "Maintenance")
        await service.create("gym-2", "info", "Yoga", "New instructor")

        for user in ("alice", "bob"):
            assert a.id not in {n.id for n in await service.list("gym-2", user)}

    @pytest.mark.asyncio
    async def test_create_initializes_recipient_sets(self, service):
        record = await service.create(
            "gym-1",
            NotificationType.WARNING,
            "Payment due",
            "Your plan expires soon",
            NavigateAction(route="/plans", params={"tab": "renew"}),
        )
        assert record.read_by == []
        assert record.deleted_by == []
        assert record.type == NotificationType.WARNING
        assert record.action.kind == "navigate"
        assert record.action.route == "/plans"

    @pytest.mark.asyncio
    async def test_create_rejects_unknown_type(self, service):
        with pytest.raises(ValueError):
            await service.create("gym-1", "urgent", "x", "y")


class TestReadTracking:
    @pytest.mark.asyncio
    async def test_mark_read_is_idempotent(self, service, backend):
        (n,) = await _seed(service, count=1)
        await service.mark_read(n.id, "alice")
        await service.mark_read(n.id, "alice")

        record = await backend.get_notification(n.id)
        assert record.read_by.count("alice") == 1

    @pytest.mark.asyncio
    async def test_mark_read_missing_notification_is_tolerated(self, service):
        await service.mark_read("does-not-exist", "alice")

    @pytest.mark.asyncio
    async def test_mark_read_requires_user(self, service):
        (n,) = await _seed(service, count=1)
        with pytest.raises(NotAuthenticated):
            await service.mark_read(n.id, "")

    @pytest.mark.asyncio
    async def test_mark_read_propagates_backend_failure(self, service, backend, monkeypatch):
        (n,) = await _seed(service, count=1)

        async def broken(notification_id, user_id):
            raise BackendError("network down")

        monkeypatch.setattr(backend, "add_notification_reader", broken)
        with pytest.raises(BackendError):
            await service.mark_read(n.id, "alice")

    @pytest.mark.asyncio
    async def test_mark_all_read(self, service):
        await _seed(service)
        result = await service.mark_all_read("gym-1", "alice")

        assert result.ok
        assert result.attempted == 3
        assert await service.unread_count("gym-1", "alice") == 0
        assert await service.unread_count("gym-1", "bob") == 3

    @pytest.mark.asyncio
    async def test_mark_all_read_skips_already_read(self, service):
        created = await _seed(service)
        await service.mark_read(created[0].id, "alice")
        result = await service.mark_all_read("gym-1", "alice")
        assert result.attempted == 2

    @pytest.mark.asyncio
    async def test_mark_all_read_partial_failure(self, service, backend, monkeypatch):
        created = await _seed(service)
        original = backend.add_notification_reader
        failing_id = created[1].id

        async def flaky(notification_id, user_id):
            if notification_id == failing_id:
                raise BackendError("timeout")
            return await original(notification_id, user_id)

        monkeypatch.setattr(backend, "add_notification_reader", flaky)
        result = await service.mark_all_read("gym-1", "alice")

        assert not result.ok
        assert result.succeeded == 2
        assert result.failed == [failing_id]
        assert await service.unread_count("gym-1", "alice") == 1


class TestDeletion:
    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, service, backend):
        (n,) = await _seed(service, count=1)
        await service.delete(n.id, "alice")
        await service.delete(n.id, "alice")

        record = await backend.get_notification(n.id)
        assert record.deleted_by.count("alice") == 1

    @pytest.mark.asyncio
    async def test_delete_only_hides_for_one_recipient(self, service):
        (n,) = await _seed(service, count=1)
        await service.delete(n.id, "alice")

        assert n.id not in {x.id for x in await service.list("gym-1", "alice")}
        assert n.id in {x.id for x in await service.list("gym-1", "bob")}

    @pytest.mark.asyncio
    async def test_delete_removed_record_is_tolerated(self, service, backend):
        (n,) = await _seed(service, count=1)
        backend.remove_notification(n.id)
        await service.delete(n.id, "alice")

    @pytest.mark.asyncio
    async def test_deleted_unread_is_not_counted(self, service):
        created = await _seed(service)
        await service.delete(created[0].id, "alice")
        assert await service.unread_count("gym-1", "alice") == 2

    @pytest.mark.asyncio
    async def test_delete_all(self, service):
        await _seed(service)
        result = await service.delete_all("gym-1", "alice")

        assert result.succeeded == 3
        assert await service.list("gym-1", "alice") == []
        assert len(await service.list("gym-1", "bob")) == 3


class TestConsistency:
    @pytest.mark.asyncio
    async def test_unread_count_matches_visible_list(self, service):
        created = await _seed(service, count=5)
        await service.mark_read(created[0].id, "alice")
        await service.delete(created[1].id, "alice")
        await service.mark_read(created[2].id, "alice")
        await service.delete(created[2].id, "alice")
        await service.mark_read(created[3].id, "bob")

        for user in ("alice", "bob", "carol"):
            visible = await service.list("gym-1", user)
            expected = sum(1 for n in visible if user not in n.read_by)
            assert await service.unread_count("gym-1", user) == expected

    @pytest.mark.asyncio
    async def test_read_then_delete_scenario(self, service):
        n1 = await service.create("gym-1", "info", "Welcome", "Hello members")

        before = await service.unread_count("gym-1", "A")
        await service.mark_read(n1.id, "A")
        assert await service.unread_count("gym-1", "A") == before - 1

        await service.delete(n1.id, "B")
        assert n1.id not in {n.id for n in await service.list("gym-1", "B")}
        listed_for_a = await service.list("gym-1", "A")
        assert n1.id in {n.id for n in listed_for_a}
        assert listed_for_a[0].read_by == ["A"]
        assert listed_for_a[0].deleted_by == ["B"]

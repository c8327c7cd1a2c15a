"""
Tests for cart helpers, the session repository and session storages
"""

import json

import pytest

from ordersync.core.exceptions import DataIntegrityError
from ordersync.schemas import CartEntry
from ordersync.services.sessions import (
    FileSessionStorage,
    MemorySessionStorage,
    SessionRepository,
    add_to_cart,
    cart_item_count,
    cart_total,
    remove_from_cart,
    session_key,
    to_order_items,
    update_quantity,
)
from ordersync.services.sessions.repository import decode_session


class TestCart:
    """Test pure cart helpers"""

    def test_add_new_item(self):
        cart = add_to_cart([], 1, "Butter Chicken", 16.99, quantity=2)
        assert len(cart) == 1
        assert cart[0].quantity == 2
        assert cart_total(cart) == 33.98

    def test_adding_existing_item_increments_quantity(self):
        cart = add_to_cart([], 2, "Garlic Naan", 3.99)
        cart = add_to_cart(cart, 2, "Garlic Naan", 3.99, quantity=2)
        assert len(cart) == 1
        assert cart[0].quantity == 3
        assert cart_item_count(cart) == 3

    def test_add_rejects_non_positive_quantity(self):
        with pytest.raises(ValueError):
            add_to_cart([], 1, "Butter Chicken", 16.99, quantity=0)

    def test_update_quantity_to_zero_removes(self):
        cart = add_to_cart([], 1, "Butter Chicken", 16.99)
        cart = add_to_cart(cart, 4, "Mango Lassi", 4.99)
        assert [e.menu_item_id for e in update_quantity(cart, 1, 0)] == [4]
        assert update_quantity(cart, 4, 5)[1].quantity == 5
        assert [e.menu_item_id for e in remove_from_cart(cart, 4)] == [1]

    def test_cart_total_and_order_items(self):
        cart = [
            CartEntry(menu_item_id=1, name="Butter Chicken", price=16.99, quantity=1),
            CartEntry(menu_item_id=2, name="Garlic Naan", price=3.99, quantity=2, special_requests="extra butter"),
        ]
        assert cart_total(cart) == 24.97
        items = to_order_items(cart)
        assert [(i.menu_item_id, i.quantity) for i in items] == [(1, 1), (2, 2)]
        assert items[1].special_requests == "extra butter"


class TestSessionKey:
    """Test canonical session keys"""

    @pytest.mark.parametrize("identifier", ["12", 12, "table-12", "TABLE_12", "Table 12", "012"])
    def test_table_aliases(self, identifier):
        assert session_key(identifier) == "table-12"

    def test_qr_codes(self):
        assert session_key("QR-T04") == "code-qr-t04"
        assert session_key("code-QR-T04") == "code-qr-t04"

    def test_empty_identifier(self):
        with pytest.raises(ValueError):
            session_key("  ")


class TestSessionRepository:
    """Test persistence rules"""

    async def test_round_trip(self, repository):
        cart = add_to_cart([], 1, "Butter Chicken", 16.99, quantity=2)
        await repository.set_cart("12", cart)
        await repository.set_customer("table-12", "  Amira ")

        session = await repository.get("Table 12")
        assert session.key == "table-12"
        assert session.customer_name == "Amira"
        assert session.cart[0].quantity == 2
        assert session.version == 2

    async def test_empty_cart_removes_entry(self, repository):
        await repository.set_cart("3", add_to_cart([], 1, "Butter Chicken", 16.99))
        assert await repository.keys() == ["table-3"]
        await repository.set_cart("3", [])
        assert await repository.keys() == []
        assert (await repository.get("3")).is_empty

    async def test_emptied_cart_is_dropped_from_stored_entry(self, repository):
        await repository.set_customer("6", "Amira")
        await repository.set_cart("6", add_to_cart([], 1, "Butter Chicken", 16.99))
        await repository.set_cart("6", [])

        stored = json.loads(await repository.storage.get("ordersync:session:table-6"))
        assert "cart" not in stored
        assert stored["customer_name"] == "Amira"
        assert (await repository.get("6")).cart == []

    async def test_stale_version_write_is_ignored(self, repository):
        first = await repository.set_cart("5", add_to_cart([], 1, "Butter Chicken", 16.99))
        await repository.set_cart("5", add_to_cart(first.cart, 2, "Garlic Naan", 3.99), expected_version=first.version)

        result = await repository.set_cart("5", [], expected_version=first.version)
        assert len(result.cart) == 2
        assert len((await repository.get("5")).cart) == 2

    async def test_ttl_expiry(self, repository, clock):
        await repository.set_customer("7", "Lea")
        clock.advance(minutes=4 * 60 - 1)
        assert (await repository.get("7")).customer_name == "Lea"
        clock.advance(minutes=2)
        assert (await repository.get("7")).is_empty
        assert await repository.keys() == []

    async def test_malformed_json_treated_as_absent(self, repository):
        await repository.storage.set("ordersync:session:table-9", "{not json")
        session = await repository.get("9")
        assert session.is_empty
        assert await repository.storage.get("ordersync:session:table-9") is None

    async def test_cancelled_cooldown_wipes_session(self, repository, clock):
        await repository.set_current_order("8", 42, "ORD00042")
        marker = await repository.mark_cancelled("8", 42)
        assert marker.table_number == "8"

        clock.advance(seconds=299)
        assert repository.cooldown_remaining(marker) == pytest.approx(1.0)
        assert (await repository.get("8")).order_id == 42

        clock.advance(seconds=1)
        assert (await repository.get("8")).is_empty
        assert await repository.get_cancelled_marker("8") is None

    async def test_sweep_reports_wiped_keys(self, repository, clock):
        await repository.set_customer("1", "Old")
        clock.advance(minutes=5 * 60)
        await repository.set_customer("2", "Fresh")
        assert await repository.sweep() == ["table-1"]
        assert await repository.keys() == ["table-2"]

    async def test_clear_removes_marker(self, repository):
        await repository.set_current_order("6", 7)
        await repository.mark_cancelled("6", 7)
        await repository.clear("6")
        assert await repository.get_cancelled_marker("6") is None
        assert (await repository.get("6")).is_empty


class TestFileStorage:
    """Test the locked JSON file storage"""

    async def test_persists_across_instances(self, tmp_path, clock):
        path = str(tmp_path / "sessions.json")
        first = SessionRepository(FileSessionStorage(path), clock=clock)
        await first.set_cart("4", add_to_cart([], 3, "Vegetable Biryani", 14.49))

        second = SessionRepository(FileSessionStorage(path), clock=clock)
        session = await second.get("4")
        assert session.cart[0].name == "Vegetable Biryani"
        assert json.loads((tmp_path / "sessions.json").read_text())

    async def test_delete_and_keys(self, tmp_path):
        storage = FileSessionStorage(str(tmp_path / "s.json"))
        await storage.set("a:1", "x")
        await storage.set("a:2", "y")
        await storage.set("b:1", "z")
        assert await storage.keys("a:") == ["a:1", "a:2"]
        await storage.delete("a:1", "b:1")
        assert await storage.keys() == ["a:2"]

    async def test_read_raw_rejects_invalid_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{oops")
        with pytest.raises(DataIntegrityError):
            FileSessionStorage(str(path)).read_raw()

    async def test_unreadable_file_starts_empty(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("[1, 2]")
        storage = FileSessionStorage(str(path))
        assert await storage.get("anything") is None


def test_decode_session_errors():
    with pytest.raises(DataIntegrityError):
        decode_session("{}")
    assert decode_session(json.dumps({"key": "table-1"})).is_empty


async def test_memory_storage_backend_name():
    storage = MemorySessionStorage()
    assert storage.backend_name == "memory"
    await storage.set("k", "v")
    assert await storage.get("k") == "v"

"""
Tests for the table session, first-visit flags and per-table carts.
"""

import pytest

from tableside.client.cache import MemoryCache
from tableside.client.cart import CartStore, MenuProduct, cart_cache_key
from tableside.client.session import (
    LAST_USED_TABLE_KEY,
    ClientFlags,
    Role,
    SessionHolder,
    TableSession,
)

PANEER = MenuProduct(product_ref="p-101", name="Paneer Butter Masala", unit_price=180.0)
NOODLES = MenuProduct(product_ref="p-205", name="Veg Noodles", unit_price=150.0)


@pytest.fixture
def table(cache):
    return TableSession(cache)


@pytest.fixture
def cart(cache, table):
    return CartStore(cache, table)


class TestTableSession:

    def test_resolve_persists_last_used(self, cache, table):
        table.resolve({"table": "007"})

        assert table.table_key == "7"
        assert cache.get(LAST_USED_TABLE_KEY) == "7"

    def test_reload_restores_last_table(self, cache, table):
        table.resolve({"table": "9"})

        reloaded = TableSession(cache)
        resolution = reloaded.resolve({})

        assert reloaded.table_key == "9"
        assert resolution.source.value == "cache"

    def test_unresolved_leaves_no_table(self, table):
        resolution = table.resolve({})

        assert not resolution.is_resolved
        assert table.table_key is None

    def test_select_rejects_garbage(self, table):
        with pytest.raises(ValueError):
            table.select("no digits")

    def test_listeners_see_changes(self, table):
        seen = []
        table.on_change(lambda old, new: seen.append((old, new)))

        table.select("3")
        table.select("3")
        table.select("4")

        assert seen == [(None, "3"), ("3", "4")]


class TestSessionHolder:

    def test_clear(self):
        session = SessionHolder()
        session.sign_in(Role.WAITER, "token-1")
        assert session.is_authenticated

        session.clear()

        assert not session.is_authenticated
        assert session.role is None


class TestClientFlags:

    def test_menu_loader_flag_is_durable(self, cache):
        ClientFlags(cache).mark_menu_loader_seen()

        assert ClientFlags(cache).has_seen_menu_loader

    def test_promo_flag_is_session_scoped(self, cache):
        flags = ClientFlags(cache, MemoryCache())
        flags.mark_promo_seen()
        assert flags.has_seen_promo

        assert not ClientFlags(cache, MemoryCache()).has_seen_promo


class TestCartStore:

    def test_add_increments_existing_line(self, table, cart):
        table.select("7")

        cart.add_item(PANEER)
        cart.add_item(PANEER)
        cart.add_item(NOODLES)

        assert [(l.product_ref, l.quantity) for l in cart.lines] == [("p-101", 2), ("p-205", 1)]
        assert cart.item_count == 3

    def test_add_then_remove_restores_cart(self, table, cart):
        table.select("7")
        cart.add_item(PANEER)
        before = cart.snapshot()

        cart.add_item(NOODLES)
        cart.remove_item(NOODLES.product_ref)

        assert cart.snapshot() == before

    def test_update_quantity_below_one_removes(self, table, cart):
        table.select("7")
        cart.add_item(PANEER)

        cart.update_quantity(PANEER.product_ref, 4)
        assert cart.quantity_of(PANEER.product_ref) == 4

        cart.update_quantity(PANEER.product_ref, 0)
        assert cart.is_empty

    def test_every_mutation_is_persisted(self, cache, table, cart):
        table.select("7")
        cart.add_item(PANEER)

        assert cache.get(cart_cache_key("7")) == cart.snapshot()

    def test_clear_drops_durable_record(self, cache, table, cart):
        table.select("7")
        cart.add_item(PANEER)

        cart.clear()

        assert cart.is_empty
        assert cache.get(cart_cache_key("7")) is None

    def test_switching_tables_restores_each_cart(self, table, cart):
        table.select("1")
        cart.add_item(PANEER)
        cart_a = cart.snapshot()

        table.select("2")
        assert cart.is_empty
        cart.add_item(NOODLES)

        table.select("1")
        assert cart.snapshot() == cart_a

        table.select("2")
        assert [l.product_ref for l in cart.lines] == [NOODLES.product_ref]

    def test_cart_survives_reload(self, cache, table, cart):
        table.select("5")
        cart.add_item(PANEER)

        reloaded_table = TableSession(cache)
        reloaded_table.resolve({})
        reloaded_cart = CartStore(cache, reloaded_table)

        assert reloaded_cart.snapshot() == cart.snapshot()

    def test_cart_without_table_is_memory_only(self, cache, cart):
        cart.add_item(PANEER)

        assert cart.item_count == 1
        assert cache.raw == {}

    def test_cart_built_before_table_moves_to_first_table(self, cache, table, cart):
        cart.add_item(PANEER)

        table.select("8")

        assert cart.item_count == 1
        assert cache.get(cart_cache_key("8")) == cart.snapshot()

    def test_bill_preview_uses_shared_formula(self, table, cart):
        table.select("7")
        cart.add_item(PANEER)
        cart.add_item(PANEER)
        cart.add_item(NOODLES)

        details = cart.bill_details()

        assert cart.subtotal == 510
        assert details["grand_total"] == pytest.approx(535.5)

    def test_corrupt_cart_reads_as_empty(self, cache, table, cart):
        cache.raw[cart_cache_key("3")] = "{not json"

        table.select("3")

        assert cart.is_empty

    def test_malformed_lines_are_dropped(self, cache, table, cart):
        cache.set(cart_cache_key("3"), [
            {"product_ref": "x", "name": "X", "unit_price": 10, "quantity": 1},
            {"product_ref": "y"},
            {"product_ref": "z", "name": "Z", "unit_price": 5, "quantity": 0},
        ])

        table.select("3")

        assert [l.product_ref for l in cart.lines] == ["x"]

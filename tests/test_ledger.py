"""
Tests for the session reservation ledger.
"""
import pytest

from stock_hub.domain import CatalogProduct
from stock_hub.errors import InsufficientStockError
from stock_hub.services.ledger import ReservationLedger


@pytest.fixture
def ledger():
    return ReservationLedger()


@pytest.fixture
def widget():
    return CatalogProduct(id=1, barcode="WID-001", name="Widget", stock_quantity=5)


@pytest.fixture
def gadget():
    return CatalogProduct(id=2, barcode="GAD-001", name="Gadget", stock_quantity=1)


class TestAvailable:
    def test_falls_back_to_catalog_stock(self, ledger):
        assert ledger.available(1, 5) == 5
        assert 1 not in ledger

    def test_uses_ledger_once_touched(self, ledger, widget):
        ledger.reserve([(widget, 2)])

        assert ledger.available(widget.id, 100) == 3
        assert widget.id in ledger


class TestReserve:
    def test_subtracts_and_materializes(self, ledger, widget, gadget):
        ledger.reserve([(widget, 2), (gadget, 1)])

        assert ledger.snapshot() == {1: 3, 2: 0}
        assert len(ledger) == 2

    def test_repeated_reservations_accumulate(self, ledger, widget):
        ledger.reserve([(widget, 2)])
        ledger.reserve([(widget, 2)])

        assert ledger.available(widget.id, widget.stock_quantity) == 1

    def test_rejects_and_applies_nothing(self, ledger, widget, gadget):
        """A shortfall on one line leaves every other line untouched."""
        with pytest.raises(InsufficientStockError) as exc:
            ledger.reserve([(widget, 2), (gadget, 2)])

        assert ledger.snapshot() == {}
        assert [(s.product_id, s.required, s.available) for s in exc.value.shortfalls] == [(2, 2, 1)]
        assert exc.value.code == "INSUFFICIENT_STOCK"

    def test_reports_every_short_product(self, ledger, widget, gadget):
        with pytest.raises(InsufficientStockError) as exc:
            ledger.reserve([(widget, 6), (gadget, 2)])

        assert {s.barcode for s in exc.value.shortfalls} == {"WID-001", "GAD-001"}
        assert exc.value.messages == [
            "Insufficient stock for Widget: required 6, available 5",
            "Insufficient stock for Gadget: required 2, available 1",
        ]

    def test_lines_of_one_product_checked_together(self, ledger, widget):
        """Two lines of 3 against stock 5 is a shortfall of 6 vs 5."""
        with pytest.raises(InsufficientStockError) as exc:
            ledger.reserve([(widget, 3), (widget, 3)])

        assert exc.value.shortfalls[0].required == 6
        assert widget.id not in ledger

    def test_check_does_not_mutate(self, ledger, gadget):
        assert ledger.check([(gadget, 2)])[0].available == 1
        assert len(ledger) == 0


class TestReleaseAndReset:
    def test_release_adds_back(self, ledger, widget):
        ledger.reserve([(widget, 4)])
        ledger.release([(widget, 4)])

        assert ledger.available(widget.id, widget.stock_quantity) == 5

    def test_release_materializes_from_catalog(self, ledger, widget):
        ledger.release([(widget, 1)])

        assert ledger.snapshot() == {widget.id: 6}

    def test_reset(self, ledger, widget, gadget):
        ledger.reserve([(widget, 1), (gadget, 1)])
        ledger.reset()

        assert len(ledger) == 0
        assert ledger.available(gadget.id, gadget.stock_quantity) == 1

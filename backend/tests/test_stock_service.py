"""
Stock ledger tests.

Verifies:
- Reservations never drive copies below zero
- OUT_OF_STOCK <=> zero copies after every mutation
- ARCHIVED / DAMAGED survive a release
- Interleaved reserve/release converge to the same count
"""

import pytest

from bookstack.extensions import db
from bookstack.models import Title
from bookstack.models.catalog import (
    AVAILABILITY_ARCHIVED,
    AVAILABILITY_AVAILABLE,
    AVAILABILITY_DAMAGED,
    AVAILABILITY_OUT_OF_STOCK,
)
from bookstack.services import stock_service
from bookstack.services.stock_service import InsufficientStock
from bookstack.validation import NotFoundError, ValidationError


def _reload(title_id):
    db.session.expire_all()
    return db.session.get(Title, title_id)


class TestReserve:

    def test_reserve_decrements(self, make_title):
        title = make_title(copies=5)
        stock_service.reserve_stock(title.id, 2)
        db.session.commit()

        title = _reload(title.id)
        assert title.copies_available == 3
        assert title.availability_status == AVAILABILITY_AVAILABLE

    def test_reserve_to_zero_flips_out_of_stock(self, make_title):
        title = make_title(copies=2)
        stock_service.reserve_stock(title.id, 2)
        db.session.commit()

        title = _reload(title.id)
        assert title.copies_available == 0
        assert title.availability_status == AVAILABILITY_OUT_OF_STOCK

    def test_insufficient_stock_leaves_count_untouched(self, make_title):
        title = make_title(copies=1)
        with pytest.raises(InsufficientStock) as exc:
            stock_service.reserve_stock(title.id, 2)

        assert exc.value.code == "INSUFFICIENT_STOCK"
        assert exc.value.details == {"title_id": title.id, "requested_quantity": 2, "copies_available": 1}
        assert _reload(title.id).copies_available == 1

    def test_reserve_unknown_title(self, db_session):
        with pytest.raises(NotFoundError):
            stock_service.reserve_stock(999, 1)

    @pytest.mark.parametrize("quantity", [0, -1, True, 1.5])
    def test_rejects_non_positive_quantity(self, make_title, quantity):
        title = make_title(copies=5)
        with pytest.raises(ValidationError):
            stock_service.reserve_stock(title.id, quantity)


class TestRelease:

    def test_release_from_zero_flips_available(self, make_title):
        title = make_title(copies=0)
        assert stock_service.release_stock(title.id, 3) is True
        db.session.commit()

        title = _reload(title.id)
        assert title.copies_available == 3
        assert title.availability_status == AVAILABILITY_AVAILABLE

    @pytest.mark.parametrize("status", [AVAILABILITY_ARCHIVED, AVAILABILITY_DAMAGED])
    def test_release_preserves_archived_and_damaged(self, make_title, status):
        title = make_title(copies=2, status=status)
        stock_service.release_stock(title.id, 1)
        db.session.commit()

        title = _reload(title.id)
        assert title.copies_available == 3
        assert title.availability_status == status

    def test_release_unknown_title_returns_false(self, db_session):
        assert stock_service.release_stock(999, 1) is False


class TestInterleaving:

    def test_reserve_release_sequence_converges(self, make_title):
        title = make_title(copies=4)
        for op, qty in [("reserve", 3), ("release", 2), ("reserve", 3), ("release", 1), ("reserve", 1)]:
            getattr(stock_service, f"{op}_stock")(title.id, qty)
            db.session.commit()

        stock = stock_service.get_stock(title.id)
        assert stock["copies_available"] == 4 - 3 + 2 - 3 + 1 - 1
        assert stock["availability_status"] == AVAILABILITY_OUT_OF_STOCK

    def test_status_matches_count_after_each_step(self, make_title):
        title = make_title(copies=1)
        for op in ["reserve", "release", "reserve", "release"]:
            getattr(stock_service, f"{op}_stock")(title.id, 1)
            db.session.commit()
            stock = stock_service.get_stock(title.id)
            assert (stock["availability_status"] == AVAILABILITY_OUT_OF_STOCK) == (stock["copies_available"] == 0)


class TestDefaults:

    def test_new_title_without_stock_is_out_of_stock(self, db_session):
        title = Title(title="Unstocked", author="A. Author")
        db.session.add(title)
        db.session.commit()

        title = _reload(title.id)
        assert title.copies_available == 0
        assert title.availability_status == AVAILABILITY_OUT_OF_STOCK
        assert stock_service.get_stock(title.id)["availability_status"] == AVAILABILITY_OUT_OF_STOCK

        stock_service.release_stock(title.id, 1)
        db.session.commit()
        db.session.expire_all()
        assert stock_service.get_stock(title.id) == {
            "title_id": title.id,
            "copies_available": 1,
            "availability_status": AVAILABILITY_AVAILABLE,
        }

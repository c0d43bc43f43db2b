import sys
import unittest
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from booking_fixtures import day, line, memory_sessionmaker, seed_pricelist, seed_product, seed_rate  # noqa: E402

from models.rental_models import FulfillmentStatus  # noqa: E402
from services.availability_service import (  # noqa: E402
    CapacityRequest,
    available_units,
    check_availability,
    committed_quantity,
    ensure_capacity,
    peak_committed,
)
from services.booking_errors import InsufficientAvailability, InvalidRentalWindow, ProductNotFound  # noqa: E402
from services.booking_service import create_reservation, transition_rental  # noqa: E402


class AvailabilityLedgerTests(unittest.TestCase):
    def setUp(self):
        self.engine, SessionLocal = memory_sessionmaker()
        self.db = SessionLocal()
        self.product = seed_product(self.db, total=5)
        self.pricelist = seed_pricelist(self.db)
        seed_rate(self.db, self.pricelist, self.product)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def _book(self, quantity, start, end, status=FulfillmentStatus.RESERVED):
        return create_reservation(self.db, 1, [line(self.product, start, end, quantity)], status=status)

    def test_partial_overlap_scenario(self):
        self._book(3, day(10), day(15))

        result = check_availability(self.db, self.product.ProductID, day(12), day(18), 3)
        self.assertFalse(result.available)
        self.assertEqual(result.free_units, 2)

        with self.assertRaises(InsufficientAvailability) as ctx:
            self._book(3, day(12), day(18))
        self.assertEqual(ctx.exception.free_units, 2)

        second = self._book(2, day(12), day(18))
        self.assertEqual(second.FulfillmentStatus, FulfillmentStatus.RESERVED)
        self.assertEqual(available_units(self.db, self.product.ProductID, day(12), day(15)), 0)

    def test_back_to_back_windows_do_not_overlap(self):
        self._book(5, day(10), day(15))
        self.assertEqual(available_units(self.db, self.product.ProductID, day(15), day(20)), 5)
        self.assertEqual(available_units(self.db, self.product.ProductID, day(5), day(10)), 5)
        self.assertEqual(available_units(self.db, self.product.ProductID, day(14), day(16)), 0)
        self._book(5, day(15), day(20))

    def test_quotations_hold_nothing(self):
        self._book(5, day(10), day(15), status=FulfillmentStatus.QUOTATION)
        self.assertEqual(committed_quantity(self.db, self.product.ProductID, day(10), day(15)), 0)
        self.assertEqual(available_units(self.db, self.product.ProductID, day(10), day(15)), 5)

    def test_return_and_cancel_release_units(self):
        first = self._book(2, day(10), day(15))
        second = self._book(3, day(10), day(15))
        self.assertEqual(available_units(self.db, self.product.ProductID, day(10), day(15)), 0)

        transition_rental(self.db, first.RentalID, FulfillmentStatus.PICKED_UP)
        self.assertEqual(available_units(self.db, self.product.ProductID, day(10), day(15)), 0)
        transition_rental(self.db, first.RentalID, FulfillmentStatus.RETURNED)
        self.assertEqual(available_units(self.db, self.product.ProductID, day(10), day(15)), 2)
        transition_rental(self.db, second.RentalID, FulfillmentStatus.CANCELLED)
        self.assertEqual(available_units(self.db, self.product.ProductID, day(10), day(15)), 5)

    def test_peak_is_lower_than_overlapping_sum_for_disjoint_items(self):
        self._book(3, day(10), day(12))
        self._book(3, day(12), day(14))
        self.assertEqual(committed_quantity(self.db, self.product.ProductID, day(10), day(14)), 6)
        self.assertEqual(peak_committed(self.db, self.product.ProductID, day(10), day(14)), 3)

    def test_batch_lines_count_against_each_other(self):
        requests = [
            CapacityRequest(self.product.ProductID, 3, day(10), day(15)),
            CapacityRequest(self.product.ProductID, 3, day(12), day(16)),
        ]
        with self.assertRaises(InsufficientAvailability):
            ensure_capacity(self.db, requests)
        ensure_capacity(
            self.db,
            [
                CapacityRequest(self.product.ProductID, 3, day(10), day(12)),
                CapacityRequest(self.product.ProductID, 3, day(12), day(16)),
            ],
        )

    def test_errors(self):
        with self.assertRaises(InvalidRentalWindow):
            check_availability(self.db, self.product.ProductID, day(15), day(10), 1)
        with self.assertRaises(ProductNotFound):
            check_availability(self.db, 999, day(10), day(15), 1)


if __name__ == "__main__":
    unittest.main()

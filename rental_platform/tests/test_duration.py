import sys
import unittest
from datetime import timedelta
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from booking_fixtures import day  # noqa: E402
from models.rental_models import RentalType  # noqa: E402
from services.booking_errors import InvalidRentalWindow  # noqa: E402
from services.duration_service import billable_units, rental_days, validate_window  # noqa: E402


class DurationTests(unittest.TestCase):
    def test_hourly_rounds_to_whole_days_first(self):
        start = day(10)
        self.assertEqual(billable_units(start, start + timedelta(hours=25), RentalType.HOURLY), 48)

    def test_weekly_partial_week_is_a_full_week(self):
        start = day(10)
        self.assertEqual(billable_units(start, start + timedelta(days=8), RentalType.WEEKLY), 2)

    def test_periods(self):
        start = day(1)
        self.assertEqual(billable_units(start, start + timedelta(days=3), RentalType.DAILY), 3)
        self.assertEqual(billable_units(start, start + timedelta(days=7), RentalType.WEEKLY), 1)
        self.assertEqual(billable_units(start, start + timedelta(days=31), RentalType.MONTHLY), 2)
        self.assertEqual(billable_units(start, start + timedelta(days=30), RentalType.MONTHLY), 1)
        self.assertEqual(billable_units(start, start + timedelta(days=366), RentalType.YEARLY), 2)

    def test_short_window_bills_one_day(self):
        start = day(1)
        self.assertEqual(rental_days(start, start + timedelta(minutes=30)), 1)
        self.assertEqual(billable_units(start, start + timedelta(minutes=30), "DAILY"), 1)

    def test_rejects_empty_and_inverted_windows(self):
        with self.assertRaises(InvalidRentalWindow):
            validate_window(day(5), day(5))
        with self.assertRaises(InvalidRentalWindow):
            billable_units(day(6), day(5), RentalType.DAILY)
        with self.assertRaises(InvalidRentalWindow):
            validate_window(None, day(5))


if __name__ == "__main__":
    unittest.main()

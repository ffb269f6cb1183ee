import random
import unittest
from unittest.mock import MagicMock, patch
from sqlalchemy.exc import IntegrityError, OperationalError
from data.database import ABTest, ABTestSession
from services.cache import get_local_cache_client
from services.errors import TestNotFound, TestNotRunning, AssignmentFailed
from services.assignment import choose_variant, get_or_create_session, MAX_RETRIES

VARIANTS = [{"id": "A", "name": "Control"}, {"id": "B", "name": "Treatment"}]


def make_test(status="running", traffic_split=None, variants=None):
    return ABTest(
        id=1,
        organization_id="org-1",
        name="Signup button",
        target_metric="signup_rate",
        variants=variants or VARIANTS,
        traffic_split=traffic_split or {"A": 50, "B": 50},
        status=status,
        confidence_level=0.95,
    )


class TestChooseVariant(unittest.TestCase):

    def test_walks_cumulative_thresholds_in_order(self):
        split = {"A": 30, "B": 70}
        self.assertEqual(choose_variant(VARIANTS, split, 0.0), "A")
        self.assertEqual(choose_variant(VARIANTS, split, 29.99), "A")
        self.assertEqual(choose_variant(VARIANTS, split, 30.0), "A") # threshold is inclusive
        self.assertEqual(choose_variant(VARIANTS, split, 30.01), "B")
        self.assertEqual(choose_variant(VARIANTS, split, 99.99), "B")

    def test_falls_back_to_last_variant_on_rounding(self):
        split = {"A": 33.33, "B": 66.66} # sums to 99.99
        self.assertEqual(choose_variant(VARIANTS, split, 99.995), "B")

    def test_variant_missing_from_split_gets_no_traffic(self):
        variants = VARIANTS + [{"id": "C", "name": "Unused"}]
        self.assertEqual(choose_variant(variants, {"A": 50, "B": 50}, 75), "B")

    def test_split_fidelity_over_many_draws(self):
        rng = random.Random(20240701)
        split = {"A": 30, "B": 70}
        draws = 100_000
        assigned_a = sum(
            1 for _ in range(draws)
            if choose_variant(VARIANTS, split, rng.random() * 100) == "A"
        )
        self.assertAlmostEqual(assigned_a / draws, 0.30, delta=0.01)


class TestAssignmentService(unittest.TestCase):

    def setUp(self):
        # Only the database session is mocked; the ORM classes are real
        self.mock_db = MagicMock()
        self.cache = get_local_cache_client()

    @patch('services.assignment.random.random')
    def test_existing_session_is_returned_unchanged(self, mock_random):
        existing = ABTestSession(ab_test_id=1, session_id='s1', variant_id='A', converted=False)
        self.mock_db.query.return_value.filter.return_value.first.return_value = existing

        result = get_or_create_session(self.mock_db, self.cache, test_id=1, session_id='s1')

        self.assertEqual(result, existing)
        self.mock_db.commit.assert_not_called()
        mock_random.assert_not_called()

    def test_existing_session_is_returned_even_when_not_running(self):
        existing = ABTestSession(ab_test_id=1, session_id='s1', variant_id='B', converted=True)
        self.mock_db.query.return_value.filter.return_value.first.return_value = existing
        self.mock_db.query.return_value.filter.return_value.one_or_none.return_value = make_test(status="completed")

        result = get_or_create_session(self.mock_db, self.cache, test_id=1, session_id='s1')
        self.assertEqual(result.variant_id, 'B')

    def test_cached_assignment_skips_database(self):
        self.cache.set_assignment(ABTestSession(ab_test_id=1, session_id='s9', variant_id='A', converted=False))

        result = get_or_create_session(self.mock_db, self.cache, test_id=1, session_id='s9')

        self.assertEqual(result.variant_id, 'A')
        self.mock_db.query.assert_not_called()

    @patch('services.assignment.random.random', return_value=0.75)
    def test_new_session_is_assigned_and_persisted(self, mock_random):
        self.mock_db.query.return_value.filter.return_value.first.return_value = None
        self.mock_db.query.return_value.filter.return_value.one_or_none.return_value = make_test()

        def mock_refresh(obj):
            obj.id = 500

        self.mock_db.refresh.side_effect = mock_refresh

        result = get_or_create_session(self.mock_db, self.cache, test_id=1, session_id='s2', user_id='u2')

        self.assertEqual(result.variant_id, 'B') # draw 75 falls in B's 50-100 band
        self.assertEqual(result.user_id, 'u2')
        self.assertFalse(result.converted)
        self.assertEqual(result.id, 500)
        self.mock_db.add.assert_called_once()
        self.mock_db.commit.assert_called_once()
        self.mock_db.rollback.assert_not_called()
        # Second call is served from the cache
        self.assertEqual(self.cache.get_assignment(1, 's2').variant_id, 'B')

    def test_missing_test_raises_not_found(self):
        self.mock_db.query.return_value.filter.return_value.first.return_value = None
        self.mock_db.query.return_value.filter.return_value.one_or_none.return_value = None

        with self.assertRaises(TestNotFound):
            get_or_create_session(self.mock_db, self.cache, test_id=99, session_id='s3')
        self.mock_db.commit.assert_not_called()

    def test_draft_and_completed_tests_refuse_new_sessions(self):
        self.mock_db.query.return_value.filter.return_value.first.return_value = None
        for status in ("draft", "paused", "completed"):
            cache = get_local_cache_client()
            self.mock_db.query.return_value.filter.return_value.one_or_none.return_value = make_test(status=status)
            with self.assertRaises(TestNotRunning) as ctx:
                get_or_create_session(self.mock_db, cache, test_id=1, session_id='s4')
            self.assertEqual(ctx.exception.status_code, 409)
        self.mock_db.commit.assert_not_called()

    @patch('services.assignment.random.random', return_value=0.1)
    def test_race_condition_recovers_by_rereading(self, mock_random):
        self.mock_db.query.return_value.filter.return_value.first.side_effect = [
            None, # attempt 1: nothing yet, try to insert
            ABTestSession(ab_test_id=1, session_id='s5', variant_id='B', converted=False) # competing insert won
        ]
        self.mock_db.query.return_value.filter.return_value.one_or_none.return_value = make_test()
        self.mock_db.commit.side_effect = [IntegrityError("Race", "Params", "Statement"), None]

        result = get_or_create_session(self.mock_db, self.cache, test_id=1, session_id='s5')

        # The competing row wins even though this request drew A
        self.assertEqual(result.variant_id, 'B')
        self.mock_db.commit.assert_called_once()
        self.mock_db.rollback.assert_called_once()
        # read, test fetch, retry read
        self.assertEqual(self.mock_db.query.call_count, 3)

    @patch('services.assignment.random.random', return_value=0.1)
    def test_exceeding_max_retries_fails(self, mock_random):
        self.mock_db.query.return_value.filter.return_value.first.return_value = None
        self.mock_db.query.return_value.filter.return_value.one_or_none.return_value = make_test()
        self.mock_db.commit.side_effect = IntegrityError("Race", "Params", "Statement")

        with self.assertRaisesRegex(AssignmentFailed, "unable to create assignment"):
            get_or_create_session(self.mock_db, self.cache, test_id=1, session_id='s6')

        self.assertEqual(self.mock_db.commit.call_count, MAX_RETRIES)
        self.assertEqual(self.mock_db.rollback.call_count, MAX_RETRIES)

    @patch('services.assignment.random.random', return_value=0.1)
    def test_database_error_rolls_back(self, mock_random):
        self.mock_db.query.return_value.filter.return_value.first.return_value = None
        self.mock_db.query.return_value.filter.return_value.one_or_none.return_value = make_test()
        self.mock_db.commit.side_effect = OperationalError("INSERT", {}, Exception("database is locked"))

        with self.assertRaises(AssignmentFailed) as ctx:
            get_or_create_session(self.mock_db, self.cache, test_id=1, session_id='s7')

        self.assertEqual(ctx.exception.status_code, 400)
        self.mock_db.commit.assert_called_once()
        self.mock_db.rollback.assert_called_once()


if __name__ == "__main__":
    unittest.main()

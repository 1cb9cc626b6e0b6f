from __future__ import annotations

import unittest
from unittest.mock import MagicMock

from sqlalchemy.exc import IntegrityError, OperationalError

from geoclock.db import retry_transient_storage


def _transient() -> OperationalError:
    return OperationalError("UPDATE", {}, Exception("server closed the connection"))


class RetryTransientStorageTests(unittest.TestCase):
    def test_second_attempt_result_is_returned(self) -> None:
        db = MagicMock()
        operation = MagicMock(side_effect=[_transient(), 7])

        result = retry_transient_storage(db, operation, backoff_seconds=0)

        self.assertEqual(result, 7)
        self.assertEqual(operation.call_count, 2)
        db.rollback.assert_called_once()

    def test_last_transient_error_is_reraised(self) -> None:
        db = MagicMock()
        last = _transient()
        operation = MagicMock(side_effect=[_transient(), last])

        with self.assertRaises(OperationalError) as ctx:
            retry_transient_storage(db, operation, attempts=2, backoff_seconds=0)

        self.assertIs(ctx.exception, last)
        self.assertEqual(operation.call_count, 2)
        self.assertEqual(db.rollback.call_count, 2)

    def test_non_positive_attempts_still_runs_once(self) -> None:
        db = MagicMock()
        operation = MagicMock(side_effect=_transient())

        with self.assertRaises(OperationalError):
            retry_transient_storage(db, operation, attempts=0, backoff_seconds=0)

        operation.assert_called_once()

    def test_non_transient_errors_are_not_retried(self) -> None:
        db = MagicMock()
        operation = MagicMock(side_effect=IntegrityError("INSERT", {}, Exception("duplicate key")))

        with self.assertRaises(IntegrityError):
            retry_transient_storage(db, operation, backoff_seconds=0)

        operation.assert_called_once()
        db.rollback.assert_not_called()


if __name__ == "__main__":
    unittest.main()

import unittest
from datetime import timedelta

from fakes import FakeDB

from cast_office.services.cron_lock import acquire_cron_lock, release_cron_lock, with_cron_lock
from cast_office.utils import utc_now


class CronLockTest(unittest.TestCase):
    def test_second_acquire_is_refused_until_release(self):
        db = FakeDB()
        token = acquire_cron_lock(db, "sales")
        self.assertIsNotNone(token)
        self.assertIsNone(acquire_cron_lock(db, "sales"))
        self.assertIsNotNone(acquire_cron_lock(db, "payslips"))

        self.assertTrue(release_cron_lock(db, "sales", token))
        self.assertEqual([r["job_name"] for r in db.rows("cron_locks")], ["payslips"])
        self.assertIsNotNone(acquire_cron_lock(db, "sales"))

    def test_each_acquire_gets_its_own_token(self):
        db = FakeDB()
        first = acquire_cron_lock(db, "sales")
        release_cron_lock(db, "sales", first)
        second = acquire_cron_lock(db, "sales")
        self.assertNotEqual(first, second)
        self.assertEqual(db.rows("cron_locks")[0]["locked_by"], second)

    def test_expired_lock_is_taken_over(self):
        expired = (utc_now() - timedelta(minutes=1)).isoformat()
        db = FakeDB({"cron_locks": [{"job_name": "sales", "expires_at": expired, "locked_by": "old"}]})
        token = acquire_cron_lock(db, "sales")
        self.assertIsNotNone(token)
        self.assertEqual(len(db.rows("cron_locks")), 1)
        self.assertEqual(db.rows("cron_locks")[0]["locked_by"], token)

    def test_stale_release_keeps_newer_lock(self):
        db = FakeDB()
        stale = acquire_cron_lock(db, "sales", ttl_seconds=-1)
        fresh = acquire_cron_lock(db, "sales")
        self.assertIsNotNone(fresh)

        self.assertFalse(release_cron_lock(db, "sales", stale))
        self.assertEqual(db.rows("cron_locks")[0]["locked_by"], fresh)
        self.assertIsNone(acquire_cron_lock(db, "sales"))

    def test_release_with_wrong_token_is_a_no_op(self):
        db = FakeDB()
        acquire_cron_lock(db, "sales")
        self.assertFalse(release_cron_lock(db, "sales", "someone-else"))
        self.assertEqual(len(db.rows("cron_locks")), 1)

    def test_with_lock_runs_once_and_releases(self):
        db = FakeDB()
        self.assertEqual(with_cron_lock(db, "posts", lambda: {"processed": 2}), {"processed": 2})
        self.assertEqual(db.rows("cron_locks"), [])

    def test_with_lock_skips_when_held(self):
        db = FakeDB()
        acquire_cron_lock(db, "posts")
        calls = []
        self.assertIsNone(with_cron_lock(db, "posts", lambda: calls.append(1)))
        self.assertEqual(calls, [])

    def test_overrunning_job_does_not_free_successor_lock(self):
        db = FakeDB()
        seen = {}

        def slow_job():
            # TTL ran out mid-job and a second trigger took the lock over
            seen["successor"] = acquire_cron_lock(db, "posts")
            return "done"

        self.assertEqual(with_cron_lock(db, "posts", slow_job, ttl_seconds=-1), "done")
        self.assertIsNotNone(seen["successor"])
        self.assertEqual(db.rows("cron_locks")[0]["locked_by"], seen["successor"])

    def test_lock_released_when_job_fails(self):
        db = FakeDB()

        def boom():
            raise RuntimeError("job failed")

        with self.assertRaises(RuntimeError):
            with_cron_lock(db, "posts", boom)
        self.assertEqual(db.rows("cron_locks"), [])


if __name__ == "__main__":
    unittest.main()

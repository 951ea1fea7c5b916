import json
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

import httpx
from fakes import FakeDB

from cast_office.services.twitter import (
    MISSING_CREDENTIALS_MESSAGE,
    POST_FAILED,
    POST_PENDING,
    POST_POSTED,
    TwitterClient,
    create_recurring_post,
    create_scheduled_post,
    delete_scheduled_post,
    generate_recurring_posts,
    get_twitter_settings,
    jst_day_of_week,
    next_run_hint,
    oauth_header,
    oauth_signature,
    parse_image_keys,
    process_due_posts,
    update_recurring_post,
    upsert_twitter_settings,
)


# Monday 2026-03-02 09:00 JST
NOW = datetime(2026, 3, 2, 0, 0, tzinfo=timezone.utc)


class OAuthTest(unittest.TestCase):
    def test_signature_matches_published_example(self):
        params = {
            "include_entities": "true",
            "oauth_consumer_key": "xvz1evFS4wEEPTGEFPHBog",
            "oauth_nonce": "kYjzVBB8Y0ZFabxSWbWovY3uYSQ2pTgmZeNu2VS4cg",
            "oauth_signature_method": "HMAC-SHA1",
            "oauth_timestamp": "1318622958",
            "oauth_token": "370773112-GmHxMAgYyLbNEtIKZeRNFsMKPR9EyMZeS9weJAEb",
            "oauth_version": "1.0",
            "status": "Hello Ladies + Gentlemen, a signed OAuth request!",
        }
        signature = oauth_signature(
            "post",
            "https://api.twitter.com/1.1/statuses/update.json",
            params,
            "kAcSOqF21Fu85e7zjz7ZN2U4ZRhfV3WpwPAoE3Z7kBw",
            "LswwdoUaIvS8ltyTt5jkRh4J50vUPVVHtR2YPi5kE",
        )
        self.assertEqual(signature, "hCtSmYh+iHYCEqBWrE7C7hYmtUk=")

    def test_header_only_carries_oauth_params(self):
        header = oauth_header({"oauth_token": "a b", "oauth_signature": "x=", "status": "hi"})
        self.assertEqual(header, 'OAuth oauth_signature="x%3D", oauth_token="a%20b"')


class ImageKeysTest(unittest.TestCase):
    def test_json_list_and_plain_key(self):
        self.assertEqual(parse_image_keys('["1/a.png", "", "1/b.png"]'), ["1/a.png", "1/b.png"])
        self.assertEqual(parse_image_keys("1/a.png"), ["1/a.png"])
        self.assertEqual(parse_image_keys(None), [])


def _mock_http(status_code=201, body=None, calls=None):
    def handler(request):
        if calls is not None:
            calls.append(request)
        if "media/upload" in str(request.url):
            return httpx.Response(200, json={"media_id_string": "m1"})
        return httpx.Response(status_code, json=body if body is not None else {"data": {"id": "t1"}})

    return httpx.Client(transport=httpx.MockTransport(handler))


class TwitterClientTest(unittest.TestCase):
    def test_post_tweet_sends_media_and_auth(self):
        calls = []
        client = TwitterClient("key", "secret", "token", "token-secret", http_client=_mock_http(calls=calls))
        result = client.post_tweet("hello", ["m1"])

        self.assertEqual(result, {"success": True, "tweet_id": "t1", "error": None})
        request = calls[0]
        self.assertTrue(request.headers["Authorization"].startswith("OAuth "))
        self.assertIn('oauth_consumer_key="key"', request.headers["Authorization"])
        self.assertEqual(json.loads(request.content), {"text": "hello", "media": {"media_ids": ["m1"]}})

    def test_post_tweet_error(self):
        client = TwitterClient("k", "s", "t", "ts", http_client=_mock_http(403, {"detail": "forbidden"}))
        result = client.post_tweet("hello")
        self.assertFalse(result["success"])
        self.assertEqual(result["error"], "forbidden")

    def test_upload_media(self):
        client = TwitterClient("k", "s", "t", "ts", http_client=_mock_http())
        self.assertEqual(client.upload_media(b"\x89PNG"), "m1")


class ProcessDuePostsTest(unittest.TestCase):
    def _db(self, with_credentials=True):
        tables = {
            "scheduled_posts": [
                {"store_id": 1, "content": "first", "scheduled_at": "2026-03-01T23:00:00+00:00", "status": POST_PENDING},
                {"store_id": 1, "content": "later", "scheduled_at": "2026-03-02T03:00:00+00:00", "status": POST_PENDING},
                {"store_id": 1, "content": "done", "scheduled_at": "2026-03-01T22:00:00+00:00", "status": POST_POSTED},
            ],
        }
        if with_credentials:
            tables["store_twitter_settings"] = [{
                "store_id": 1, "api_key": "k", "api_secret": "s", "access_token": "t", "access_token_secret": "ts",
            }]
        return FakeDB(tables)

    def test_missing_credentials_marks_failed(self):
        db = self._db(with_credentials=False)
        result = process_due_posts(db, now=NOW, sleep=lambda _: None)

        self.assertEqual(result, {"processed": 1, "success": 0, "failed": 1})
        post = db.rows("scheduled_posts")[0]
        self.assertEqual(post["status"], POST_FAILED)
        self.assertEqual(post["error_message"], MISSING_CREDENTIALS_MESSAGE)
        self.assertEqual(db.rows("scheduled_posts")[1]["status"], POST_PENDING)

    def test_due_post_is_published(self):
        db = self._db()
        result = process_due_posts(db, now=NOW, http_client=_mock_http(), sleep=lambda _: None)

        self.assertEqual(result["success"], 1)
        post = db.rows("scheduled_posts")[0]
        self.assertEqual(post["status"], POST_POSTED)
        self.assertEqual(post["twitter_post_id"], "t1")
        self.assertIsNone(post["error_message"])

    def test_images_are_uploaded_then_deleted(self):
        db = self._db()
        db.tables["scheduled_posts"][0]["image_url"] = json.dumps(["1/a.png", "https://example.com/b.png"])
        with patch("cast_office.services.twitter._load_image", return_value=b"img") as load, \
                patch("cast_office.services.twitter.r2_delete") as delete:
            process_due_posts(db, now=NOW, http_client=_mock_http(), sleep=lambda _: None)

        self.assertEqual(load.call_count, 2)
        delete.assert_called_once_with(["twitter-images/1/a.png"])

    def test_tweet_failure_keeps_error(self):
        db = self._db()
        process_due_posts(db, now=NOW, http_client=_mock_http(429, {"title": "Too Many Requests"}), sleep=lambda _: None)
        post = db.rows("scheduled_posts")[0]
        self.assertEqual(post["status"], POST_FAILED)
        self.assertEqual(post["error_message"], "Too Many Requests")


class ScheduledPostCrudTest(unittest.TestCase):
    def test_create_and_delete(self):
        db = FakeDB()
        post = create_scheduled_post(db, 1, "  hello  ", "2026-03-02T12:00:00+09:00", ["1/a.png"])
        self.assertEqual(post["content"], "hello")
        self.assertEqual(post["scheduled_at"], "2026-03-02T03:00:00+00:00")
        self.assertEqual(json.loads(post["image_url"]), ["1/a.png"])

        with self.assertRaises(LookupError):
            delete_scheduled_post(db, 2, post["id"])
        delete_scheduled_post(db, 1, post["id"])
        self.assertEqual(db.rows("scheduled_posts"), [])

    def test_blank_content(self):
        with self.assertRaises(ValueError):
            create_scheduled_post(FakeDB(), 1, "   ", NOW)

    def test_only_pending_posts_can_be_deleted(self):
        db = FakeDB({"scheduled_posts": [{"id": 5, "store_id": 1, "status": POST_POSTED}]})
        with self.assertRaises(ValueError):
            delete_scheduled_post(db, 1, 5)


class RecurringPostTest(unittest.TestCase):
    def test_day_of_week_is_jst_sunday_based(self):
        self.assertEqual(jst_day_of_week(NOW), 1)
        self.assertEqual(jst_day_of_week(datetime(2026, 3, 1, 14, 59, tzinfo=timezone.utc)), 0)

    def test_generate(self):
        db = FakeDB({"recurring_posts": [
            {"id": 1, "store_id": 1, "content": "daily", "frequency": "daily", "post_time": "20:00",
             "days_of_week": [], "is_active": True},
            {"id": 2, "store_id": 1, "content": "monday", "frequency": "weekly", "post_time": "12:30",
             "days_of_week": [1], "is_active": True},
            {"id": 3, "store_id": 1, "content": "sunday", "frequency": "weekly", "post_time": "12:30",
             "days_of_week": [0], "is_active": True},
            {"id": 4, "store_id": 1, "content": "done today", "frequency": "daily", "post_time": "12:30",
             "days_of_week": [], "is_active": True, "last_generated_at": "2026-03-01T23:30:00+00:00"},
        ]})
        result = generate_recurring_posts(db, now=NOW)

        self.assertEqual(result, {"generated": 2, "skipped": 2, "total": 4})
        scheduled = {p["recurring_post_id"]: p for p in db.rows("scheduled_posts")}
        self.assertEqual(scheduled[1]["scheduled_at"], "2026-03-02T11:00:00+00:00")
        self.assertEqual(scheduled[2]["status"], POST_PENDING)

        again = generate_recurring_posts(db, now=NOW)
        self.assertEqual(again["generated"], 0)

    def test_validation(self):
        db = FakeDB()
        with self.assertRaises(ValueError):
            create_recurring_post(db, 1, {"content": "x", "frequency": "hourly", "post_time": "20:00"})
        with self.assertRaises(ValueError):
            create_recurring_post(db, 1, {"content": "x", "frequency": "daily", "post_time": "25:00"})
        with self.assertRaises(ValueError):
            create_recurring_post(db, 1, {"content": "x", "frequency": "weekly", "post_time": "20:00",
                                          "days_of_week": []})

    def test_create_update_and_next_run(self):
        db = FakeDB()
        post = create_recurring_post(db, 1, {
            "content": "hi", "frequency": "weekly", "post_time": "20:00", "days_of_week": [3, 1, 1],
        })
        self.assertEqual(post["days_of_week"], [1, 3])
        self.assertEqual(next_run_hint(post, NOW), "2026-03-02 20:00")

        updated = update_recurring_post(db, 1, post["id"], {"days_of_week": [3]})
        self.assertEqual(updated["days_of_week"], [3])
        self.assertEqual(next_run_hint(updated, NOW), "2026-03-04 20:00")
        with self.assertRaises(LookupError):
            update_recurring_post(db, 2, post["id"], {"is_active": False})


class TwitterSettingsTest(unittest.TestCase):
    def test_secrets_are_masked_and_kept_when_blank(self):
        db = FakeDB()
        upsert_twitter_settings(db, 1, {"api_key": "k", "api_secret": "s", "access_token": "t",
                                        "access_token_secret": "ts"})
        settings = upsert_twitter_settings(db, 1, {"api_key": "k2", "api_secret": "", "access_token_secret": ""})

        self.assertNotIn("api_secret", settings)
        self.assertTrue(settings["has_api_secret"])
        self.assertTrue(settings["connected"])
        self.assertEqual(settings["api_key"], "k2")
        self.assertEqual(db.rows("store_twitter_settings")[0]["api_secret"], "s")

    def test_not_connected_without_token(self):
        self.assertFalse(get_twitter_settings(FakeDB(), 1)["connected"])


if __name__ == "__main__":
    unittest.main()

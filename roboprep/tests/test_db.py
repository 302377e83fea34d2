import unittest
from datetime import datetime, timedelta, timezone

from roboprep.db import (
    MAX_RECENTLY_USED,
    CategoryLimitError,
    CategoryNameConflictError,
    CategoryRecord,
    DuplicateEmailError,
    NotFoundError,
    PromptRecord,
    ResponseRecord,
    SqlDbClient,
)


def _now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SqlDbClientTests(unittest.TestCase):
    """
    Uses in-memory SQLite; each test gets a fresh database.
    """

    def setUp(self):
        self.db = SqlDbClient("sqlite+pysqlite:///:memory:")
        self.user = self.db.create_user(
            "Dj@Example.com", "hash", first_name="Dana", last_name="Jones",
            is_admin=True, is_approved=True,
        )

    def add_prompt(self, prompt_id, is_user_created=True, tags=None):
        return self.db.create_prompt(
            PromptRecord(
                id=prompt_id,
                title=prompt_id.title(),
                prompt_text=f"Text for {prompt_id}",
                tags=tags or [],
                is_user_created=is_user_created,
            )
        )

    def test_users_are_keyed_by_normalized_email(self):
        self.assertEqual(self.user.email, "dj@example.com")
        self.assertEqual(self.db.get_user_by_email(" DJ@example.com ").id, self.user.id)
        with self.assertRaises(DuplicateEmailError):
            self.db.create_user("dj@example.com", "other")
        self.assertTrue(self.db.has_admin())

    def test_list_users_newest_first(self):
        second = self.db.create_user("two@example.com", "hash")
        users = self.db.list_users()
        self.assertEqual([u.id for u in users], [second.id, self.user.id])
        self.assertEqual(self.db.count_users(), 2)

    def test_update_user(self):
        other = self.db.create_user("two@example.com", "hash")
        self.assertFalse(other.is_approved)
        updated = self.db.update_user(other.id, is_approved=True, password_hash="new")
        self.assertTrue(updated.is_approved)
        self.assertEqual(updated.password_hash, "new")
        self.assertIsNone(self.db.update_user("missing", is_admin=True))

    def test_session_lookup_honours_expiry(self):
        self.db.create_session(self.user.id, "live", _now() + timedelta(hours=1))
        self.db.create_session(self.user.id, "stale", _now() - timedelta(seconds=1))
        self.assertEqual(self.db.get_session_user("live").id, self.user.id)
        self.assertIsNone(self.db.get_session_user("stale"))
        self.assertIsNone(self.db.get_session_user("unknown"))

        self.assertEqual(self.db.purge_expired_sessions(), 1)
        self.assertEqual(self.db.delete_session("live"), 1)
        self.assertIsNone(self.db.get_session_user("live"))

    def test_delete_user_cascades(self):
        other = self.db.create_user("two@example.com", "hash", is_approved=True)
        self.add_prompt("p1")
        self.db.create_session(other.id, "tok", _now() + timedelta(hours=1))
        self.db.store_favorites(other.id, ["p1"])
        saved = self.db.save_response(
            ResponseRecord(id=None, prompt_id="p1", response_text="hi"), user_id=other.id
        )

        self.assertTrue(self.db.delete_user(other.id))
        self.assertFalse(self.db.delete_user(other.id))
        self.assertIsNone(self.db.get_session_user("tok"))
        stats = self.db.get_stats()
        self.assertEqual(stats["session_count"], 0)
        self.assertEqual(stats["user_favorite_count"], 0)
        self.assertIsNone(self.db.get_response(saved.id).user_id)

    def test_store_prompts_keeps_prompts_with_responses(self):
        self.add_prompt("keep")
        self.add_prompt("drop")
        self.add_prompt("core", is_user_created=False)
        self.db.save_response(
            ResponseRecord(id=None, prompt_id="keep", response_text="saved"),
            user_id=self.user.id,
        )

        self.db.store_prompts(
            [PromptRecord(id="new", title="New", prompt_text="n", tags=["fresh"])],
            is_user_created=True,
        )
        ids = {p.id for p in self.db.list_prompts(is_user_created=True)}
        self.assertEqual(ids, {"keep", "new"})
        self.assertTrue(self.db.prompt_exists("core"))
        self.assertEqual(self.db.get_prompt("new").tags, ["fresh"])

    def test_add_prompts_skips_existing(self):
        self.add_prompt("p1")
        added, skipped = self.db.add_prompts(
            [
                PromptRecord(id="p1", title="Dup", prompt_text="x"),
                PromptRecord(id="p2", title="Two", prompt_text="y"),
            ],
            is_user_created=True,
        )
        self.assertEqual((added, skipped), (1, 1))
        self.assertEqual(self.db.get_prompt("p1").title, "P1")

    def test_tags_are_shared_and_rewritten(self):
        self.add_prompt("a", tags=["bio", "quick"])
        self.add_prompt("b", tags=["bio"])
        self.assertEqual(self.db.get_stats()["tag_count"], 2)

        prompt = self.db.get_prompt("a")
        prompt.tags = ["bio", "long"]
        self.db.update_prompt(prompt)
        self.assertEqual(sorted(self.db.get_prompt("a").tags), ["bio", "long"])
        self.assertEqual(self.db.get_prompt("b").tags, ["bio"])

    def test_recently_used_is_capped(self):
        for index in range(MAX_RECENTLY_USED + 2):
            self.add_prompt(f"p{index}")
        for index in range(MAX_RECENTLY_USED + 2):
            self.db.record_prompt_use(self.user.id, f"p{index}")

        recent = self.db.get_recently_used(self.user.id)
        self.assertEqual(len(recent), MAX_RECENTLY_USED)
        self.assertNotIn("p0", recent)
        self.assertEqual(self.db.get_prompt("p3").usage_count, 1)
        self.assertIsNone(self.db.record_prompt_use(self.user.id, "missing"))

    def test_store_recently_used_skips_unknown(self):
        self.add_prompt("a")
        self.add_prompt("b")
        count = self.db.store_recently_used(self.user.id, ["b", "ghost", "a"])
        self.assertEqual(count, 2)
        self.assertEqual(self.db.get_recently_used(self.user.id), ["b", "a"])

    def test_category_limits_and_rename(self):
        first = self.db.add_category(" Jingles ")
        self.assertEqual(first.name, "Jingles")
        with self.assertRaises(CategoryNameConflictError):
            self.db.add_category("jingles")
        second = self.db.add_category("Promos")
        self.db.add_category("Sports")
        with self.assertRaises(CategoryLimitError):
            self.db.add_category("Extra")

        with self.assertRaises(CategoryNameConflictError):
            self.db.rename_category(second.id, "JINGLES")
        self.assertEqual(self.db.rename_category(second.id, "Ads").name, "Ads")
        with self.assertRaises(NotFoundError):
            self.db.rename_category("missing", "Nope")

    def test_store_and_add_user_categories(self):
        self.db.add_category("Old")
        self.db.store_user_categories([CategoryRecord(id="c1", name="One")])
        self.assertEqual([c.id for c in self.db.list_categories(True)], ["c1"])
        added, skipped = self.db.add_user_categories(
            [CategoryRecord(id="c1", name="One"), CategoryRecord(id="c2", name="Two")]
        )
        self.assertEqual((added, skipped), (1, 1))

    def test_toggle_favorite(self):
        self.add_prompt("a")
        self.assertTrue(self.db.toggle_favorite(self.user.id, "a"))
        self.assertEqual(self.db.get_favorites(self.user.id), ["a"])
        self.assertFalse(self.db.toggle_favorite(self.user.id, "a"))
        with self.assertRaises(NotFoundError):
            self.db.toggle_favorite(self.user.id, "missing")

    def test_user_settings_fall_back_to_global(self):
        self.db.set_setting("theme", "light")
        self.db.set_setting("fontSize", "medium")
        self.db.set_user_setting(self.user.id, "theme", "dark")

        resolved = self.db.get_user_settings(
            self.user.id, {"theme": None, "fontSize": None, "compact": False}
        )
        self.assertEqual(resolved, {"theme": "dark", "fontSize": "medium", "compact": False})
        self.assertTrue(self.db.remove_user_setting(self.user.id, "theme"))
        self.assertEqual(self.db.get_user_settings(self.user.id)["theme"], "light")

    def test_migrate_legacy_settings(self):
        self.db.set_setting("theme", "dark")
        self.db.set_setting("favorites", ["a", "b"])
        self.assertEqual(self.db.migrate_legacy_settings(self.user.id), 2)
        self.db.set_setting("theme", "light")
        self.assertEqual(
            self.db.get_user_settings(self.user.id, {"theme": None, "favorites": []}),
            {"theme": "dark", "favorites": ["a", "b"]},
        )

    def test_save_response_creates_then_updates(self):
        self.add_prompt("p1")
        created = self.db.save_response(
            ResponseRecord(
                id="r1",
                prompt_id="p1",
                response_text="first",
                model_used="gemini-test",
                total_tokens=12,
                variables_used={"artist": "Prince"},
            ),
            user_id=self.user.id,
        )
        self.assertEqual(created.author_first_name, "Dana")
        self.assertIsNone(created.last_edited)

        updated = self.db.save_response(
            ResponseRecord(id="r1", prompt_id="p1", response_text="second")
        )
        self.assertEqual(updated.response_text, "second")
        self.assertEqual(updated.model_used, "gemini-test")
        self.assertEqual(updated.total_tokens, 12)
        self.assertEqual(updated.variables_used, {"artist": "Prince"})
        self.assertIsNotNone(updated.last_edited)
        self.assertEqual(self.db.count_responses("p1"), 1)

        with self.assertRaises(NotFoundError):
            self.db.save_response(ResponseRecord(id=None, prompt_id="nope", response_text="x"))

    def test_store_and_add_responses(self):
        self.add_prompt("p1")
        count = self.db.store_responses(
            [
                ResponseRecord(id="r1", prompt_id="p1", response_text="a"),
                ResponseRecord(id=None, prompt_id="p1", response_text="no id"),
                ResponseRecord(id="r2", prompt_id="ghost", response_text="b"),
            ]
        )
        self.assertEqual(count, 1)
        added, skipped = self.db.add_responses(
            [
                ResponseRecord(id="r1", prompt_id="p1", response_text="dup"),
                ResponseRecord(id="r3", prompt_id="p1", response_text="c"),
            ],
            user_id=self.user.id,
        )
        self.assertEqual((added, skipped), (1, 1))
        self.assertEqual(self.db.get_response("r3").user_id, self.user.id)

    def test_deleting_prompt_removes_its_responses(self):
        self.add_prompt("p1", tags=["x"])
        self.db.save_response(ResponseRecord(id="r1", prompt_id="p1", response_text="a"))
        self.assertTrue(self.db.delete_prompt("p1"))
        self.assertIsNone(self.db.get_response("r1"))
        self.assertFalse(self.db.delete_prompt("p1"))

    def test_clear_data_keeps_users(self):
        self.add_prompt("p1", tags=["x"])
        self.db.add_category("Mine")
        self.db.set_setting("theme", "dark")
        self.db.create_session(self.user.id, "tok", _now() + timedelta(hours=1))

        self.db.clear_data()
        stats = self.db.get_stats()
        self.assertEqual(stats["prompt_count"], 0)
        self.assertEqual(stats["tag_count"], 0)
        self.assertEqual(stats["category_count"], 0)
        self.assertEqual(stats["setting_count"], 0)
        self.assertEqual(stats["user_count"], 1)
        self.assertEqual(stats["session_count"], 1)

    def test_database_version(self):
        self.assertIsNone(self.db.get_database_version())
        self.db.set_database_version("2.0.0")
        self.db.set_database_version("2.1.0")
        self.assertEqual(self.db.get_database_version(), "2.1.0")


if __name__ == "__main__":
    unittest.main()

import unittest
from datetime import datetime, timedelta, timezone

from fastapi import Response

from roboprep.auth import (
    clear_auth_cookie,
    hash_password,
    initialize_default_admin,
    new_session_token,
    set_auth_cookie,
    start_session,
    verify_password,
)
from roboprep.config import Settings
from roboprep.db import SqlDbClient


class PasswordHashTests(unittest.TestCase):
    def test_hash_and_verify(self):
        hashed = hash_password("Str0ng!Pass", rounds=4)
        self.assertTrue(hashed.startswith("$2"))
        self.assertNotIn("Str0ng!Pass", hashed)
        self.assertTrue(verify_password("Str0ng!Pass", hashed))
        self.assertFalse(verify_password("Wr0ng!Pass", hashed))

    def test_verify_rejects_empty_or_malformed(self):
        self.assertFalse(verify_password("", "$2b$04$abc"))
        self.assertFalse(verify_password("Str0ng!Pass", ""))
        self.assertFalse(verify_password("Str0ng!Pass", "not-a-bcrypt-hash"))


class SessionTests(unittest.TestCase):
    def setUp(self):
        self.settings = Settings(bcrypt_rounds=4, session_ttl_hours=12)
        self.db = SqlDbClient("sqlite+pysqlite:///:memory:")
        self.user = self.db.create_user("dj@example.com", "hash", is_approved=True)

    def test_tokens_are_opaque_and_unique(self):
        tokens = {new_session_token() for _ in range(50)}
        self.assertEqual(len(tokens), 50)
        self.assertTrue(all(len(token) >= 40 for token in tokens))

    def test_start_session_expires_after_ttl(self):
        token = start_session(self.db, self.user, self.settings)
        self.assertEqual(self.db.get_session_user(token).id, self.user.id)

        now = datetime.now(timezone.utc).replace(tzinfo=None)
        later = now + timedelta(hours=12, minutes=1)
        self.assertIsNone(self.db.get_session_user(token, later))

    def test_cookie_attributes(self):
        response = Response()
        set_auth_cookie(response, "tok", self.settings)
        cookie = response.headers["set-cookie"]
        self.assertIn("robo_auth=tok", cookie)
        self.assertIn("max-age=43200", cookie.lower())
        self.assertIn("httponly", cookie.lower())
        self.assertIn("path=/", cookie.lower())
        self.assertIn("samesite=lax", cookie.lower())
        self.assertNotIn("secure", cookie.lower())

        cleared = Response()
        clear_auth_cookie(cleared, self.settings)
        self.assertIn("max-age=0", cleared.headers["set-cookie"].lower())

    def test_secure_cookie_setting(self):
        response = Response()
        set_auth_cookie(response, "tok", Settings(cookie_secure=True))
        self.assertIn("secure", response.headers["set-cookie"].lower())

    def test_initialize_default_admin_once(self):
        admin = initialize_default_admin(self.db, self.settings)
        self.assertTrue(admin.is_admin)
        self.assertTrue(admin.is_approved)
        self.assertEqual(admin.email, "admin@example.com")
        stored = self.db.get_user_by_email("admin@example.com")
        self.assertTrue(verify_password("RoboPrepMe", stored.password_hash))
        self.assertIsNone(initialize_default_admin(self.db, self.settings))


if __name__ == "__main__":
    unittest.main()

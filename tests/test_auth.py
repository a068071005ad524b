import hashlib
import unittest
from datetime import datetime, timedelta, timezone

from smarthjem.auth import (
    UnauthorizedException,
    can_access,
    create_token,
    decode_token,
    has_admin_access,
    hash_password,
    is_legacy_hash,
    public_user,
    reset_token_problem,
    verify_password,
)
from smarthjem.models import AuthConfig


class PasswordTests(unittest.TestCase):
    def test_bcrypt_round_trip(self) -> None:
        stored = hash_password("hemmelig")
        self.assertTrue(stored.startswith("$2"))
        self.assertTrue(verify_password("hemmelig", stored))
        self.assertFalse(verify_password("feil", stored))

    def test_legacy_scrypt_hash(self) -> None:
        salt = "abcd1234"
        derived = hashlib.scrypt(b"gammelt", salt=salt.encode(), n=16384, r=8, p=1, dklen=64)
        stored = f"{derived.hex()}.{salt}"
        self.assertTrue(is_legacy_hash(stored))
        self.assertTrue(verify_password("gammelt", stored))
        self.assertFalse(verify_password("nytt", stored))

    def test_empty_or_garbage_hash(self) -> None:
        self.assertFalse(verify_password("x", ""))
        self.assertFalse(verify_password("x", "not-a-hash"))


class TokenTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = AuthConfig(jwt_secret="test-secret")
        self.user = {"id": 7, "username": "kari@example.com", "is_admin": False, "is_mini_admin": True}

    def test_round_trip(self) -> None:
        payload = decode_token(create_token(self.user, self.config), self.config)
        self.assertEqual(payload["sub"], "7")
        self.assertTrue(payload["is_mini_admin"])

    def test_wrong_secret_is_rejected(self) -> None:
        token = create_token(self.user, self.config)
        with self.assertRaises(UnauthorizedException) as ctx:
            decode_token(token, AuthConfig(jwt_secret="other"))
        self.assertEqual(ctx.exception.status_code, 401)


class ResetTokenTests(unittest.TestCase):
    def test_problems(self) -> None:
        now = datetime(2025, 5, 1, tzinfo=timezone.utc)
        valid = {"expires_at": (now + timedelta(hours=1)).isoformat(), "used_at": None}
        self.assertIsNone(reset_token_problem(valid, now))
        self.assertEqual(reset_token_problem(None, now), "Invalid reset token")
        self.assertEqual(reset_token_problem(dict(valid, used_at=now.isoformat()), now), "Reset token already used")
        expired = {"expires_at": (now - timedelta(minutes=1)).isoformat()}
        self.assertEqual(reset_token_problem(expired, now), "Reset token expired")


class AccessTests(unittest.TestCase):
    def test_can_access(self) -> None:
        admin = {"id": 1, "is_admin": True}
        owner = {"id": 2}
        mini = {"id": 3, "is_mini_admin": True}
        self.assertTrue(can_access(admin, 2))
        self.assertTrue(can_access(owner, 2))
        self.assertFalse(can_access(owner, 5))
        self.assertFalse(can_access(mini, 2))
        self.assertFalse(can_access(owner, None))

    def test_admin_access_includes_mini_admin(self) -> None:
        self.assertTrue(has_admin_access({"is_mini_admin": True}))
        self.assertFalse(has_admin_access({"is_admin": False}))

    def test_public_user_hides_password(self) -> None:
        user = {"id": 1, "username": "a", "password_hash": "secret"}
        self.assertNotIn("password_hash", public_user(user))


if __name__ == "__main__":
    unittest.main()

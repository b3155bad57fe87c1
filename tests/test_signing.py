import base64
import hashlib
import hmac
import unittest
from datetime import datetime, timezone

from cafeteria_pay.errors import ConfigurationError
from cafeteria_pay.psp import signing

SECRET = "netget-secret"


class TestHmacScheme(unittest.TestCase):
    def setUp(self):
        self.payload = {
            "merchant_id": "merchant-42",
            "amount": 27500,
            "order_id": "ord-1",
            "customer_email": "a@b.cl",
            "currency": "CLP",
        }

    def test_round_trip(self):
        signature = signing.sign(self.payload, SECRET, signing.SignatureScheme.HMAC)
        self.assertTrue(signing.verify(self.payload, signature, SECRET))

    def test_mutating_any_field_invalidates(self):
        signature = signing.sign(self.payload, SECRET)
        for key in self.payload:
            tampered = dict(self.payload)
            tampered[key] = f"{tampered[key]}x"
            self.assertFalse(signing.verify(tampered, signature, SECRET), key)

    def test_added_field_invalidates(self):
        signature = signing.sign(self.payload, SECRET)
        self.assertFalse(signing.verify({**self.payload, "extra": "1"}, signature, SECRET))

    def test_wrong_secret_invalidates(self):
        signature = signing.sign(self.payload, SECRET)
        self.assertFalse(signing.verify(self.payload, signature, "other-secret"))

    def test_canonical_string_sorted_and_excludes_signature(self):
        payload = {"b": "2", "a": 1, "signature": "abc", "skip": None, "flag": True}
        self.assertEqual(signing.canonical_string(payload), "a=1&b=2&flag=true")

    def test_signature_field_does_not_affect_result(self):
        plain = signing.sign(self.payload, SECRET)
        self.assertEqual(signing.sign({**self.payload, "signature": "whatever"}, SECRET), plain)

    def test_matches_reference_hmac(self):
        message = "amount=27500&currency=CLP&customer_email=a@b.cl&merchant_id=merchant-42&order_id=ord-1"
        expected = hmac.new(SECRET.encode(), message.encode(), hashlib.sha256).hexdigest()
        self.assertEqual(signing.sign(self.payload, SECRET), expected)

    def test_verify_accepts_uppercase_hex(self):
        signature = signing.sign(self.payload, SECRET).upper()
        self.assertTrue(signing.verify(self.payload, signature, SECRET))

    def test_verify_rejects_missing_signature(self):
        self.assertFalse(signing.verify(self.payload, None, SECRET))
        self.assertFalse(signing.verify(self.payload, "", SECRET))

    def test_empty_secret_is_configuration_error(self):
        with self.assertRaises(ConfigurationError):
            signing.sign(self.payload, "")
        with self.assertRaises(ConfigurationError):
            signing.sign(self.payload, None)


class TestNonceSeedScheme(unittest.TestCase):
    now = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
    raw = bytes(range(16))

    def test_tran_key_hashes_raw_nonce_bytes(self):
        auth = signing.nonce_auth("login", "secret", nonce_bytes=self.raw, now=self.now)
        seed = "2026-10-19T12:00:00+00:00"
        expected = base64.b64encode(hashlib.sha256(self.raw + seed.encode() + b"secret").digest()).decode()

        self.assertEqual(auth.seed, seed)
        self.assertEqual(auth.tran_key, expected)
        self.assertEqual(auth.nonce, base64.b64encode(self.raw).decode())

    def test_hashing_base64_text_gives_a_different_key(self):
        auth = signing.nonce_auth("login", "secret", nonce_bytes=self.raw, now=self.now)
        wrong = base64.b64encode(
            hashlib.sha256(auth.nonce.encode() + auth.seed.encode() + b"secret").digest()
        ).decode()
        self.assertNotEqual(auth.tran_key, wrong)

    def test_payload_block(self):
        auth = signing.nonce_auth("login", "secret", nonce_bytes=self.raw, now=self.now)
        self.assertEqual(set(auth.as_payload()), {"login", "tranKey", "nonce", "seed"})
        self.assertEqual(auth.as_payload()["login"], "login")

    def test_fresh_nonce_each_call(self):
        first = signing.nonce_auth("login", "secret", now=self.now)
        second = signing.nonce_auth("login", "secret", now=self.now)
        self.assertNotEqual(first.nonce, second.nonce)
        self.assertEqual(len(base64.b64decode(first.nonce)), signing.NONCE_BYTES)

    def test_naive_clock_treated_as_utc(self):
        self.assertEqual(signing.utc_seed(datetime(2026, 1, 2, 3, 4, 5)), "2026-01-02T03:04:05+00:00")

    def test_sign_with_nonce_seed_scheme(self):
        auth = signing.sign({"login": "login"}, "secret", signing.SignatureScheme.NONCE_SEED,
                            nonce_bytes=self.raw, now=self.now)
        self.assertIsInstance(auth, signing.NonceAuth)
        self.assertEqual(auth, signing.nonce_auth("login", "secret", nonce_bytes=self.raw, now=self.now))

    def test_missing_login_or_secret(self):
        with self.assertRaises(ConfigurationError):
            signing.nonce_auth(None, "secret")
        with self.assertRaises(ConfigurationError):
            signing.nonce_auth("login", "")


if __name__ == "__main__":
    unittest.main()

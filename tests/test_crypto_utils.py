"""
Tests for account password hashing and verification codes.
"""
from crypto_utils import CryptoUtils, OTP_DIGITS


class TestPasswordHashing:

    def test_hash_and_verify(self, crypto):
        password_hash = crypto.hash_password("s3cret-pass")
        assert password_hash.startswith("$argon2id$")
        assert crypto.verify_password("s3cret-pass", password_hash) is True
        assert crypto.verify_password("wrong", password_hash) is False

    def test_pepper_is_applied(self, crypto):
        password_hash = crypto.hash_password("s3cret-pass")
        other = CryptoUtils("another-pepper")
        assert other.verify_password("s3cret-pass", password_hash) is False

    def test_garbage_hash(self, crypto):
        assert crypto.verify_password("s3cret-pass", "not-a-hash") is False


class TestOtp:

    def test_code_round_trip(self, crypto):
        secret = crypto.generate_otp_secret()
        code = crypto.generate_otp(secret)
        assert len(code) == OTP_DIGITS
        assert code.isdigit()
        assert crypto.verify_otp(secret, code) is True

    def test_counter_binds_code(self, crypto):
        secret = crypto.generate_otp_secret()
        first = crypto.generate_otp(secret, 0)
        second = crypto.generate_otp(secret, 1)
        assert crypto.verify_otp(secret, second, 1) is True
        if first != second:
            assert crypto.verify_otp(secret, first, 1) is False

    def test_empty_code(self, crypto):
        assert crypto.verify_otp(crypto.generate_otp_secret(), "") is False
        assert crypto.verify_otp(crypto.generate_otp_secret(), None) is False

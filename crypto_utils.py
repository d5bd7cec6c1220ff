"""
Cryptographic utilities for BurnVault.
Handles account password hashing and email verification codes.
"""
import logging
from typing import Optional

import argon2
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
import pyotp

# Configure logging
logger = logging.getLogger(__name__)

# Constants for one-time login codes
OTP_DIGITS = 6

class CryptoUtils:
    """Cryptographic utilities for account security."""

    def __init__(self, server_pepper: str):
        """
        Initialize crypto utilities with server pepper.

        Args:
            server_pepper: Server-wide secret pepper for additional security
        """
        self.server_pepper = server_pepper.encode()
        self.argon2_hasher = argon2.PasswordHasher(
            time_cost=2,  # Number of iterations
            memory_cost=102400,  # 100MB memory usage
            parallelism=8,  # Number of parallel threads
            hash_len=32,  # Output hash length
            salt_len=16  # Salt length
        )

    def _peppered(self, password: str) -> bytes:
        return password.encode() + self.server_pepper

    def hash_password(self, password: str) -> str:
        """
        Hash an account password with Argon2id.

        Args:
            password: Plain account password

        Returns:
            Encoded hash including salt and parameters
        """
        return self.argon2_hasher.hash(self._peppered(password))

    def verify_password(self, password: str, password_hash: str) -> bool:
        """
        Check an account password against its stored hash.

        Args:
            password: Candidate password
            password_hash: Hash produced by hash_password

        Returns:
            True if the password matches
        """
        try:
            return self.argon2_hasher.verify(password_hash, self._peppered(password))
        except VerifyMismatchError:
            return False
        except (VerificationError, InvalidHashError) as e:
            logger.warning("Password hash could not be verified: %s", e)
            return False

    def generate_otp_secret(self) -> str:
        """
        Generate a new secret for an email verification code.

        Returns:
            Base32 encoded secret
        """
        return pyotp.random_base32()

    def generate_otp(self, secret: str, counter: int = 0) -> str:
        """
        Derive the verification code for a secret.

        Args:
            secret: Base32 secret from generate_otp_secret
            counter: HOTP counter (bumped on every resend)

        Returns:
            Numeric code
        """
        return pyotp.HOTP(secret, digits=OTP_DIGITS).at(counter)

    def verify_otp(self, secret: str, code: Optional[str], counter: int = 0) -> bool:
        """
        Check a verification code.

        Args:
            secret: Base32 secret
            code: Code typed by the user
            counter: HOTP counter the code was issued for

        Returns:
            True if the code matches
        """
        if not code:
            return False
        return pyotp.HOTP(secret, digits=OTP_DIGITS).verify(code.strip(), counter)

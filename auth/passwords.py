"""
auth/passwords.py -- bcrypt password hashing.

Security design decisions:
  bcrypt directly (no passlib wrapper). Its cost factor makes brute-force of
  low-entropy secrets expensive, and checkpw compares in constant time.

  SHA-256 pre-hash: bcrypt only looks at the first 72 bytes of input and
  current bcrypt releases refuse longer input outright. Passwords may be up
  to PASSWORD_MAX_LENGTH characters (multi-byte characters included), so the
  plaintext is reduced to base64(sha256(plaintext)) -- 44 ASCII bytes --
  before it reaches bcrypt. Every character stays significant.

  The work factor is fixed at construction from Settings.bcrypt_rounds. There
  is no per-call cost parameter for a caller to weaken [W1].

  dummy_verify() runs a full bcrypt check against a hash of a throwaway
  secret. AuthCore calls it when the email is unknown so response time does
  not reveal whether an account exists [C1].
"""

from __future__ import annotations

import base64
import hashlib
import logging

import bcrypt

from auth.errors import HashingError

logger = logging.getLogger("authgate.auth.passwords")

BCRYPT_MIN_ROUNDS = 4
BCRYPT_MAX_ROUNDS = 31

_DUMMY_SECRET = "authgate_timing_dummy"


def _prepare(plain: str) -> bytes:
    # surrogatepass: every str encodes, lone surrogates included.
    return base64.b64encode(hashlib.sha256(plain.encode("utf-8", "surrogatepass")).digest())


class PasswordHasher:
    """Salted one-way hashing with a configured bcrypt cost.

    Usage:
        hasher = PasswordHasher(rounds=12)
        digest = hasher.hash("secret1")
        hasher.verify("secret1", digest)   # True
    """

    def __init__(self, rounds: int = 12) -> None:
        if not BCRYPT_MIN_ROUNDS <= rounds <= BCRYPT_MAX_ROUNDS:
            raise ValueError(f"bcrypt rounds must be between {BCRYPT_MIN_ROUNDS} and {BCRYPT_MAX_ROUNDS}")
        self.rounds = rounds
        # Computed once so the first unknown-email login is not measurably
        # slower than later ones.
        self._dummy_hash = self.hash(_DUMMY_SECRET)

    def hash(self, plain: str) -> str:
        """Return a bcrypt digest ($2b$<cost>$<salt+hash>) of the plaintext.

        A fresh salt is drawn on every call, so two hashes of the same
        plaintext differ.
        """
        try:
            digest = bcrypt.hashpw(_prepare(plain), bcrypt.gensalt(rounds=self.rounds))
        except (ValueError, OSError) as exc:
            raise HashingError("bcrypt failed to produce a hash") from exc
        return digest.decode("ascii")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed. False on mismatch or a corrupt digest."""
        try:
            return bcrypt.checkpw(_prepare(plain), hashed.encode("ascii"))
        except (ValueError, UnicodeEncodeError):
            logger.warning("Stored password hash could not be parsed")
            return False

    def dummy_verify(self, plain: str) -> None:
        """Spend one bcrypt verification without a real target [C1].

        Fails the same way verify() does, so an unknown email can never
        produce a different outcome from a wrong password.
        """
        try:
            bcrypt.checkpw(_prepare(plain), self._dummy_hash.encode("ascii"))
        except ValueError:
            logger.warning("Dummy password check could not run")

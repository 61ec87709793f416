"""
SRP-6a server side.

Per username: NoChallenge -> ChallengeIssued -> Verified | Failed.

``begin_challenge`` generates the server ephemeral from the stored verifier
and parks its secret in the pending store (one slot per username, the latest
challenge wins). ``verify_proof`` consumes that slot whatever the outcome, so
a proof can never be replayed against the same handshake.

The group is the RFC 5054 2048-bit prime with SHA-256. The client must use the
same parameters (see ``zkvault.client.srp_client``).
"""
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Tuple, Union

from sqlalchemy.orm import Session
from srptools import SRPContext, SRPServerSession
from srptools.constants import PRIME_2048, PRIME_2048_GEN
from srptools.exceptions import SRPException

from zkvault.core.config import SRP_HANDSHAKE_TTL
from zkvault.core.exceptions import InvalidCredentials
from zkvault.core.pending_store import PendingStore
from zkvault.db import crud
from zkvault.db.models import User

logger = logging.getLogger(__name__)

SRP_PRIME = PRIME_2048
SRP_GENERATOR = PRIME_2048_GEN
SRP_HASH = hashlib.sha256


def srp_context(username: str, password: str = None) -> SRPContext:
    return SRPContext(
        username,
        password,
        prime=SRP_PRIME,
        generator=SRP_GENERATOR,
        hash_func=SRP_HASH,
    )


def as_hex(value: Union[str, bytes]) -> str:
    """srptools hands back hex as str or bytes depending on the value; normalise."""
    if isinstance(value, bytes):
        value = value.decode("ascii")
    return value.lower()


@dataclass(frozen=True)
class SrpChallenge:
    salt: str
    server_public_key: str


class SrpExchange:
    def __init__(self, store: PendingStore, ttl: int = SRP_HANDSHAKE_TTL):
        self.store = store
        self.ttl = ttl
        # Stands in for a real verifier so unknown usernames cost the same work
        self._decoy_verifier = format(secrets.randbits(2040) | 1, "x")

    @staticmethod
    def _key(username: str) -> str:
        return f"srp:{username}"

    def register(self, db: Session, username: str, srp_salt: str, srp_verifier: str) -> User:
        """Store a new account's salt and verifier. Leaves handshake state alone."""
        user = crud.create_user(db, username, srp_salt, srp_verifier)
        logger.info(f"Registered account {user.id} ({username})")
        return user

    def begin_challenge(self, db: Session, username: str) -> SrpChallenge:
        user = crud.get_user_by_username(db, username)
        verifier = user.srp_verifier if user else self._decoy_verifier
        server_session = SRPServerSession(srp_context(username), verifier)

        if user is None:
            raise InvalidCredentials(internal_detail=f"SRP challenge for unknown username {username!r}")

        challenge = SrpChallenge(salt=user.srp_salt, server_public_key=as_hex(server_session.public))
        self.store.set(
            self._key(username),
            {
                "user_id": user.id,
                "server_public_key": challenge.server_public_key,
                "server_private_key": as_hex(server_session.private),
            },
            self.ttl,
        )
        return challenge

    def verify_proof(self, db: Session, username: str, client_public_key: str, client_proof: str) -> Tuple[User, str]:
        """Check the client's proof; returns the account and the server proof (M2)."""
        handshake = self.store.pop(self._key(username))
        if handshake is None:
            raise InvalidCredentials(internal_detail=f"No active SRP challenge for {username!r}")

        user = crud.get_user_by_username(db, username)
        if user is None or user.id != handshake["user_id"]:
            raise InvalidCredentials(internal_detail=f"Account for {username!r} changed during handshake")

        try:
            # SRP-6a safety check: A mod N must not be zero
            if int(client_public_key, 16) % int(SRP_PRIME, 16) == 0:
                raise SRPException("Client public key is zero mod N")
            server_session = SRPServerSession(
                srp_context(username),
                user.srp_verifier,
                private=handshake["server_private_key"],
            )
            server_session.process(client_public_key, user.srp_salt)
            expected_proof = as_hex(server_session.key_proof)
            server_proof = as_hex(server_session.key_proof_hash)
        except (SRPException, ValueError, TypeError) as e:
            raise InvalidCredentials(internal_detail=f"SRP processing failed for {username!r}: {type(e).__name__}")

        if not hmac.compare_digest(expected_proof.encode("ascii"), client_proof.strip().lower().encode("utf-8")):
            raise InvalidCredentials(internal_detail=f"Bad SRP proof for {username!r}")

        logger.info(f"SRP proof verified for account {user.id}")
        return user, server_proof

    def reset(self, username: str) -> None:
        """Drop any outstanding handshake, e.g. after the verifier changed."""
        self.store.delete(self._key(username))

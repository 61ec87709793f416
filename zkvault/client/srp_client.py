"""
Client half of the SRP-6a login, for tests, scripts and reference clients.

The SRP password is never the master password itself: it is first
strengthened with PBKDF2 (``Purpose.ACCOUNT_AUTH``) using the account salt,
and the hex result is what enters the SRP math.
"""
import hmac
from typing import Dict, Optional, Tuple

from srptools import SRPClientSession

from zkvault.services.key_derivation import derive_auth_key, generate_salt
from zkvault.services.srp_exchange import as_hex, srp_context


def build_registration(username: str, password: str, salt: Optional[str] = None) -> Dict[str, str]:
    """Salt and verifier for /auth/register (or a username/password change)."""
    salt = salt or generate_salt()
    context = srp_context(username, derive_auth_key(password, salt))
    password_hash = context.get_common_password_hash(int(salt, 16))
    verifier = context.get_common_password_verifier(password_hash)
    return {"srp_salt": salt, "srp_verifier": format(verifier, "x")}


class SrpClientLogin:
    """One login attempt: respond to a challenge, then check the server's proof."""

    def __init__(self, username: str, password: str):
        self.username = username
        self.password = password
        self._expected_server_proof = None

    def respond(self, salt: str, server_public_key: str) -> Tuple[str, str]:
        """Return (client_public_key, client_proof) for /auth/login."""
        context = srp_context(self.username, derive_auth_key(self.password, salt))
        session = SRPClientSession(context)
        session.process(server_public_key, salt)
        self._expected_server_proof = as_hex(session.key_proof_hash)
        return as_hex(session.public), as_hex(session.key_proof)

    def verify_server_proof(self, server_proof: str) -> bool:
        """False means the server does not hold our verifier; do not trust it."""
        if self._expected_server_proof is None or not server_proof:
            return False
        return hmac.compare_digest(
            self._expected_server_proof.encode("ascii"),
            server_proof.strip().lower().encode("utf-8"),
        )

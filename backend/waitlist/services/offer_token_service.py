"""
Single-use link tokens for the public waitlist page.

The token handed to the customer is a signed JWT (HS256, CONFIRMATION_TOKEN_SECRET) so forged or
truncated links are rejected before any lookup. Only its SHA-256 is stored; expiry and
single-use are enforced from the offer_tokens row, not from JWT claims, so an offer that ran
out can still be told apart from a link that never existed.
"""
import hashlib
import logging
import secrets
from datetime import datetime

import jwt
from sqlalchemy.orm import Session

from waitlist.config import settings
from waitlist.core.clock import as_utc, utcnow
from waitlist.core.errors import NotFoundError
from waitlist.models.offer_token import OfferToken

logger = logging.getLogger(__name__)

_JWT_ALGORITHM = "HS256"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class OfferTokenService:
    def __init__(self, secret: str | None = None) -> None:
        self._secret = secret or settings.confirmation_token_secret

    def issue(
        self,
        db: Session,
        entry_id: int,
        kind: str,
        expires_at: datetime,
        *,
        slot_id: int | None = None,
        commit: bool = True,
    ) -> str:
        token = jwt.encode(
            {"eid": entry_id, "kind": kind, "sid": slot_id, "jti": secrets.token_hex(8)},
            self._secret,
            algorithm=_JWT_ALGORITHM,
        )
        if isinstance(token, bytes):
            token = token.decode("utf-8")
        db.add(
            OfferToken(
                entry_id=entry_id,
                slot_id=slot_id,
                kind=kind,
                token_hash=hash_token(token),
                expires_at=as_utc(expires_at),
            )
        )
        if commit:
            db.commit()
        return token

    def resolve(self, db: Session, token: str, *, kind: str | None = None) -> OfferToken:
        """
        Row for a well-formed token we issued. Consumed or expired rows are returned too:
        callers decide whether that means "already done" or "offer expired".
        """
        try:
            claims = jwt.decode(token, self._secret, algorithms=[_JWT_ALGORITHM])
        except jwt.InvalidTokenError as e:
            logger.debug("Rejected malformed waitlist token: %s", e)
            raise NotFoundError("Invalid token") from e
        row = db.query(OfferToken).filter(OfferToken.token_hash == hash_token(token)).first()
        if row is None or row.entry_id != claims.get("eid"):
            raise NotFoundError("Unknown token")
        if kind is not None and row.kind != kind:
            raise NotFoundError("Wrong token kind")
        return row

    @staticmethod
    def is_usable(row: OfferToken, now: datetime) -> bool:
        return row.consumed_at is None and as_utc(row.expires_at) > now

    @staticmethod
    def consume(db: Session, row: OfferToken, now: datetime | None = None, *, commit: bool = True) -> bool:
        """Mark used. Compare-and-set on consumed_at so a token is consumed exactly once."""
        updated = (
            db.query(OfferToken)
            .filter(OfferToken.id == row.id, OfferToken.consumed_at.is_(None))
            .update({OfferToken.consumed_at: now or utcnow()}, synchronize_session=False)
        )
        if commit:
            db.commit()
        return updated == 1

    @staticmethod
    def purge_expired(db: Session, now: datetime) -> int:
        deleted = (
            db.query(OfferToken)
            .filter(OfferToken.expires_at < now)
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted

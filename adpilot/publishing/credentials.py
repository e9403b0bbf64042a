"""AdPilot — Credential Resolver.

Picks the access token for an owner: the user's own token when stored,
otherwise the system token. Tokens are opaque; only the platform can say
whether one is still valid.
"""

from dataclasses import dataclass

from sqlmodel import Session, select

from adpilot.core.errors import NoCredentialError
from adpilot.core.logging import get_logger
from adpilot.models.publish_models import MetaToken

logger = get_logger("publishing.credentials")

TOKEN_PREFERENCE = ("user", "system")


@dataclass(frozen=True)
class Credential:
    token: str
    token_type: str
    owner_id: str

    @classmethod
    def from_override(cls, token: str, owner_id: str = "") -> "Credential":
        return cls(token=token, token_type="override", owner_id=owner_id)

    def __repr__(self) -> str:
        return f"Credential(type={self.token_type}, owner={self.owner_id})"


class CredentialResolver:
    def __init__(self, session: Session):
        self.session = session

    def resolve(self, owner_id: str) -> Credential:
        for token_type in TOKEN_PREFERENCE:
            row = self.session.exec(
                select(MetaToken).where(
                    MetaToken.owner_id == owner_id,
                    MetaToken.token_type == token_type,
                )
            ).first()
            if row is not None and row.token:
                logger.info(f"Using {token_type} token for owner {owner_id}")
                return Credential(
                    token=row.token, token_type=token_type, owner_id=owner_id
                )
        raise NoCredentialError(
            f"No Meta access token stored for owner {owner_id}", owner_id=owner_id
        )

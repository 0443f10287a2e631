from sqlmodel import Session
from typing import Optional

from ..models.exchange_credential import ExchangeCredential


class ExchangeCredentialRepository:
    def __init__(self, session: Session):
        self.session = session

    def save(self, credential: ExchangeCredential) -> ExchangeCredential:
        """
        save the credential
        """
        self.session.add(credential)
        self.session.commit()
        self.session.refresh(credential)
        return credential

    def get_by_id(self, credential_id: int) -> Optional[ExchangeCredential]:
        """
        get the credential by id
        """
        return self.session.get(ExchangeCredential, credential_id)


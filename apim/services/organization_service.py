from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from apim.domain.errors import ConflictError, NotFoundError
from apim.domain.models import Organization, OrganizationCreate
from apim.infra.db import get_engine


class OrganizationService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def create_organization(self, payload: OrganizationCreate) -> Organization:
        with self._session() as session:
            organization = Organization(name=payload.name)
            session.add(organization)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("organization name already exists") from exc
            session.refresh(organization)
            return organization

    def get_organization(self, organization_id: str) -> Organization:
        with self._session() as session:
            organization = session.get(Organization, organization_id)
            if organization is None:
                raise NotFoundError("organization not found")
            return organization

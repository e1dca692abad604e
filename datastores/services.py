"""Registered datastore services: where a datastore lives and how to reach it."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Mapped, Session, mapped_column

from datastores import open_datastore
from datastores.base import Datastore
from datastores.exceptions import MetadataError
from datastores.staging import make_stager
from metastore.db import Base

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("url", "port", "username", "password", "name", "group")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _staging_mode():
    return os.environ.get("DATASTORE_STAGING_MODE") or None


class Service(Base):
    """A datastore service registered with the platform."""

    __tablename__ = "datastore_services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Host at which the service is available
    url: Mapped[str] = mapped_column(String(255), default="")
    port: Mapped[str] = mapped_column(String(8), default="")
    username: Mapped[str] = mapped_column(String(255), default="")
    password: Mapped[str] = mapped_column(String(255), default="")
    # Database name
    name: Mapped[str] = mapped_column(String(255), default="")
    # Backend type, e.g. postgres
    group: Mapped[str] = mapped_column(String(64), default="")
    # Local directory or user@server.com:/home/user/data the database server can read from
    staging_directory: Mapped[str] = mapped_column(String(1024), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @classmethod
    def get_all(cls, session: Session) -> list["Service"]:
        try:
            return list(session.scalars(select(cls).order_by(cls.id)))
        except SQLAlchemyError as e:
            logger.error(f"error while listing the datastore services: {e}")
            raise MetadataError("could not list the datastore services") from e

    @classmethod
    def get(cls, session: Session, service_id: int) -> "Service":
        try:
            service = session.get(cls, service_id)
        except SQLAlchemyError as e:
            logger.error(f"error while finding the datastore service {service_id}: {e}")
            raise MetadataError(f"could not fetch datastore service {service_id}") from e
        if service is None:
            raise MetadataError(f"datastore service {service_id} not found")
        return service

    def validate(self) -> None:
        """Raise ValueError if the service is not usable."""
        for field in _REQUIRED_FIELDS:
            if not (getattr(self, field) or "").strip():
                raise ValueError(f"{field} can't be empty")
        try:
            int(self.port)
        except ValueError:
            raise ValueError("port should be a valid number") from None
        if not (self.staging_directory or "").strip():
            raise ValueError("staging_directory can't be empty")
        make_stager(self.staging_directory, _staging_mode())

    def create(self, session: Session) -> "Service":
        session.add(self)
        self._commit(session, "could not create the datastore service")
        logger.info(f"created datastore service {self.id} ({self.group} at {self.url}:{self.port})")
        return self

    def update(self, session: Session) -> "Service":
        session.add(self)
        self._commit(session, f"could not update datastore service {self.id}")
        return self

    def delete(self, session: Session) -> None:
        session.delete(self)
        self._commit(session, f"could not delete datastore service {self.id}")

    @staticmethod
    def _commit(session: Session, message: str) -> None:
        try:
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"{message}: {e}")
            raise MetadataError(message) from e

    def datastore(self) -> Datastore:
        """Open a live datastore handle for this service."""
        timeout = int(os.environ.get("DATASTORE_CONNECT_TIMEOUT", "10"))
        return open_datastore(
            self.group,
            self.url,
            self.port,
            self.name,
            self.username,
            self.password,
            self.staging_directory,
            staging_mode=_staging_mode(),
            connect_timeout=timeout,
        )

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# sqlite only autoincrements INTEGER PRIMARY KEY
_LandingId = BigInteger().with_variant(Integer, "sqlite")


def _uuid_str() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class ModsecLanding(Base):
    """Raw ModSecurity audit document as appended by the ingestion agents."""

    __tablename__ = "modsec_landing"

    id: Mapped[int] = mapped_column(_LandingId, primary_key=True, autoincrement=True)
    tag: Mapped[Optional[str]] = mapped_column(Text, nullable=True, index=True)
    time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )
    data: Mapped[Any] = mapped_column(JSON, nullable=False)
    processed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false(), index=True
    )


class LogRecord(Base):
    __tablename__ = "logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    organization_id: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True, index=True
    )

    action: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    client_ip: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    client_port: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    host: Mapped[str] = mapped_column(Text, nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False)
    request_url: Mapped[str] = mapped_column(Text, nullable=False)
    http_version: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    rule: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rule_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    maturity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    headers: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    response_header: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    response_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class DomainWafStatus(Base):
    __tablename__ = "domain_waf_status"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "domain", name="uq_domain_waf_status_org_domain"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    organization_id: Mapped[str] = mapped_column(
        String(128), nullable=False, index=True
    )
    domain: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    waf_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

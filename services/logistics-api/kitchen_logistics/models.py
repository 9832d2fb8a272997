"""SQLAlchemy models for the kitchen logistics service."""

import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

from .clock import utcnow

Base = declarative_base()


class Role(str, enum.Enum):
    CENTRAL_ADMIN = "CENTRAL_ADMIN"
    BRANCH_ADMIN = "BRANCH_ADMIN"
    COURIER = "COURIER"


class RequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    SHIPPED = "SHIPPED"
    RECEIVED = "RECEIVED"
    REJECTED = "REJECTED"


class DistributionStatus(str, enum.Enum):
    DIKIRIM = "DIKIRIM"
    WADAH_KEMBALI_SEBAGIAN = "WADAH_KEMBALI_SEBAGIAN"
    SELESAI = "SELESAI"


class Branch(Base):
    """A kitchen branch. Exactly one branch acts as the central warehouse."""

    __tablename__ = "branches"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(128), nullable=False)
    address = Column(String(255))
    is_center = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        Index("branches_name_ci_uq", func.lower(name), unique=True),
        Index(
            "branches_single_center_uq",
            is_center,
            unique=True,
            postgresql_where=is_center.is_(True),
            sqlite_where=is_center.is_(True),
        ),
    )


class Material(Base):
    __tablename__ = "materials"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(128), nullable=False)
    unit = Column(String(32), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (Index("materials_name_ci_uq", func.lower(name), unique=True),)


class School(Base):
    __tablename__ = "schools"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(128), nullable=False)
    address = Column(String(255))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    username = Column(String(64), nullable=False, unique=True)
    name = Column(String(128), nullable=False)
    email = Column(String(255))
    password_hash = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False)
    branch_id = Column(Uuid, ForeignKey("branches.id"))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    branch = relationship(Branch, lazy="joined")


class Stock(Base):
    """Quantity of one material held at one branch."""

    __tablename__ = "stock"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    material_id = Column(Uuid, ForeignKey("materials.id"), nullable=False)
    branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=False)
    qty = Column(Numeric(12, 2), nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    material = relationship(Material, lazy="joined", innerjoin=True)
    branch = relationship(Branch, lazy="joined", innerjoin=True)

    __table_args__ = (
        UniqueConstraint("material_id", "branch_id", name="stock_material_branch_uq"),
        CheckConstraint("qty >= 0", name="stock_qty_non_negative"),
    )


class Request(Base):
    """A branch's material request, moved through its lifecycle by the center."""

    __tablename__ = "requests"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(32), nullable=False, unique=True)
    branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=False)
    status = Column(String(16), nullable=False, default=RequestStatus.PENDING.value)
    notes = Column(Text)
    processed_by_id = Column(Uuid, ForeignKey("users.id"))
    processed_at = Column(DateTime)
    request_date = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    branch = relationship(Branch, lazy="joined", innerjoin=True)
    processed_by = relationship(User, lazy="joined")
    items = relationship(
        "RequestItem",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestItem.position",
    )


class RequestItem(Base):
    __tablename__ = "request_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id = Column(Uuid, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False)
    material_id = Column(Uuid, ForeignKey("materials.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    qty = Column(Numeric(12, 2), nullable=False)
    qty_approved = Column(Numeric(12, 2))

    request = relationship(Request, back_populates="items")
    material = relationship(Material, lazy="joined", innerjoin=True)

    @property
    def effective_qty(self):
        return self.qty_approved if self.qty_approved is not None else self.qty


class Distribution(Base):
    """Containers of prepared food sent from a branch to a school."""

    __tablename__ = "distributions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=False)
    school_id = Column(Uuid, ForeignKey("schools.id"), nullable=False)
    courier_name = Column(String(128), nullable=False)
    container_count = Column(Integer, nullable=False)
    returned_container = Column(Integer, nullable=False, default=0)
    status = Column(String(32), nullable=False, default=DistributionStatus.DIKIRIM.value)
    sent_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())
    returned_at = Column(DateTime)

    branch = relationship(Branch, lazy="joined", innerjoin=True)
    school = relationship(School, lazy="joined", innerjoin=True)

    __table_args__ = (
        CheckConstraint("container_count >= 1", name="distribution_container_count_positive"),
        CheckConstraint(
            "returned_container >= 0 AND returned_container <= container_count",
            name="distribution_returned_within_sent",
        ),
    )


class LogActivity(Base):
    """Append-only audit row written alongside every mutation."""

    __tablename__ = "log_activity"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"))
    action = Column(String(64), nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    timestamp = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (Index("log_activity_timestamp_idx", timestamp),)


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name = Column(String(64), primary_key=True)
    value = Column(Integer, nullable=False, default=0)

# models.py
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
    text,
)
from sqlalchemy.orm import relationship, validates

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


ORDER_TYPES = ("Dying", "Printing")
ORDER_STATUSES = ("pending", "delivered")
LAB_STATUSES = ("sent", "received", "cancelled")
SEVERITIES = ("info", "warning", "error", "critical")


# =========================================
# =============== Reference ===============
# =========================================

class Party(Base):
    __tablename__ = "parties"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    contact_name = Column(String(100), nullable=True)
    contact_phone = Column(String(20), nullable=True)
    address = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("uq_parties_name_ci", func.lower(name), unique=True),
    )

    def __repr__(self):
        return f"<Party(id={self.id}, name={self.name})>"


class Mill(Base):
    __tablename__ = "mills"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    contact_person = Column(String(100), nullable=True)
    contact_phone = Column(String(20), nullable=True)
    address = Column(String(500), nullable=True)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_mills_active_name", "is_active", "name"),
    )

    def __repr__(self):
        return f"<Mill(id={self.id}, name={self.name})>"


class Quality(Base):
    __tablename__ = "qualities"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Quality(id={self.id}, name={self.name})>"


class Process(Base):
    __tablename__ = "processes"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    priority = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("uq_processes_name_ci", func.lower(name), unique=True),
        CheckConstraint("priority BETWEEN 1 AND 100", name="ck_processes_priority"),
    )

    def __repr__(self):
        return f"<Process(id={self.id}, name={self.name}, priority={self.priority})>"


# =========================================
# ================ Orders =================
# =========================================

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_no = Column(String(20), nullable=False, unique=True, index=True)  # ORD-01, ORD-02, ...
    order_type = Column(String(20), nullable=False)
    arrival_date = Column(Date, nullable=False)
    delivery_date = Column(Date, nullable=True)
    po_date = Column(Date, nullable=True)
    po_number = Column(String(50), nullable=True)
    style_no = Column(String(50), nullable=True)
    contact_name = Column(String(50), nullable=True)
    contact_phone = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default="pending", server_default="pending")

    party_id = Column(Integer, ForeignKey("parties.id", ondelete="RESTRICT"), nullable=False, index=True)
    party = relationship("Party")

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        # NULL po_number/style_no never collide, so the rule only bites when both are present
        UniqueConstraint("party_id", "po_number", "style_no", name="uq_orders_party_po_style"),
        CheckConstraint("order_type IN ('Dying','Printing')", name="ck_orders_type"),
        CheckConstraint("status IN ('pending','delivered')", name="ck_orders_status"),
        Index("ix_orders_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<Order(order_no={self.order_no}, status={self.status})>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    quality_id = Column(Integer, ForeignKey("qualities.id", ondelete="RESTRICT"), nullable=True, index=True)
    quantity = Column(Numeric(18, 3), nullable=False)
    description = Column(String(200), nullable=True)
    image_urls = Column(JSON, nullable=False, default=list)

    order = relationship("Order", back_populates="items")
    quality = relationship("Quality")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_qty_pos"),
    )

    @validates("quantity")
    def _check_quantity(self, key, value):
        if value is None or Decimal(str(value)) <= 0:
            raise ValueError("quantity must be > 0")
        return value


# =========================================
# ============= Mill ledgers ==============
# =========================================

class MillInput(Base):
    __tablename__ = "mill_inputs"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    order_no = Column(String(20), nullable=False, index=True)
    mill_id = Column(Integer, ForeignKey("mills.id", ondelete="CASCADE"), nullable=False, index=True)
    mill_date = Column(Date, nullable=False)
    chalan_no = Column(String(50), nullable=False)
    greigh_mtr = Column(Numeric(18, 3), nullable=False)
    pcs = Column(Integer, nullable=False)
    quality_id = Column(Integer, ForeignKey("qualities.id", ondelete="SET NULL"), nullable=True)
    process_name = Column(String(100), nullable=True)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    order = relationship("Order")
    mill = relationship("Mill")
    quality = relationship("Quality")
    additional_meters = relationship(
        "MillInputAdditional",
        back_populates="mill_input",
        cascade="all, delete-orphan",
        order_by="MillInputAdditional.position",
    )

    __table_args__ = (
        UniqueConstraint("order_id", "chalan_no", name="uq_mill_inputs_order_chalan"),
        CheckConstraint("greigh_mtr > 0", name="ck_mill_inputs_greigh_pos"),
        CheckConstraint("pcs > 0", name="ck_mill_inputs_pcs_pos"),
        Index("ix_mill_inputs_mill_date", "mill_id", "mill_date"),
    )

    @validates("chalan_no")
    def _trim_chalan(self, key, value):
        return value.strip() if isinstance(value, str) else value

    def __repr__(self):
        return f"<MillInput(order_no={self.order_no}, chalan_no={self.chalan_no})>"


class MillInputAdditional(Base):
    """A split consignment carried under the parent's chalan."""
    __tablename__ = "mill_input_additionals"

    id = Column(Integer, primary_key=True)
    mill_input_id = Column(Integer, ForeignKey("mill_inputs.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    greigh_mtr = Column(Numeric(18, 3), nullable=False)
    pcs = Column(Integer, nullable=False)
    quality_id = Column(Integer, ForeignKey("qualities.id", ondelete="SET NULL"), nullable=True)
    process_name = Column(String(100), nullable=True)
    notes = Column(String(500), nullable=True)

    mill_input = relationship("MillInput", back_populates="additional_meters")
    quality = relationship("Quality")

    __table_args__ = (
        CheckConstraint("greigh_mtr > 0", name="ck_mia_greigh_pos"),
        CheckConstraint("pcs > 0", name="ck_mia_pcs_pos"),
    )


class MillOutput(Base):
    __tablename__ = "mill_outputs"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    order_no = Column(String(20), nullable=False, index=True)
    recd_date = Column(Date, nullable=False)
    mill_bill_no = Column(String(50), nullable=False)
    finished_mtr = Column(Numeric(18, 3), nullable=False)
    mill_rate = Column(Numeric(18, 3), nullable=True)
    quality_id = Column(Integer, ForeignKey("qualities.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    order = relationship("Order")
    quality = relationship("Quality")

    __table_args__ = (
        CheckConstraint("finished_mtr > 0", name="ck_mill_outputs_mtr_pos"),
        CheckConstraint("mill_rate IS NULL OR mill_rate >= 0", name="ck_mill_outputs_rate"),
        Index("ix_mill_outputs_recd", "recd_date"),
    )


class Dispatch(Base):
    __tablename__ = "dispatches"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    order_no = Column(String(20), nullable=False, index=True)
    dispatch_date = Column(Date, nullable=False)
    bill_no = Column(String(50), nullable=False)
    finish_mtr = Column(Numeric(18, 3), nullable=False)
    sale_rate = Column(Numeric(18, 3), nullable=False, default=0)
    total_value = Column(Numeric(20, 6), nullable=False, default=0)
    quality_id = Column(Integer, ForeignKey("qualities.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    order = relationship("Order")
    quality = relationship("Quality")

    __table_args__ = (
        CheckConstraint("finish_mtr > 0", name="ck_dispatches_mtr_pos"),
        CheckConstraint("sale_rate >= 0", name="ck_dispatches_rate"),
        Index("ix_dispatches_date", "dispatch_date"),
    )


# =========================================
# ================== Lab ==================
# =========================================

class Lab(Base):
    __tablename__ = "labs"

    id = Column(Integer, primary_key=True)
    # no FK on either id: lab rows outlive the order they were sent for
    order_id = Column(Integer, nullable=False, index=True)
    order_item_id = Column(Integer, nullable=False)  # checked against order.items in services/labs.py
    lab_send_date = Column(Date, nullable=False)
    lab_send_number = Column(String(100), nullable=False, default="")
    lab_send_data = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), nullable=False, default="sent", server_default="sent")
    received_date = Column(Date, nullable=True)
    remarks = Column(String(500), nullable=True)
    soft_deleted = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        # one live lab per order item; soft-deleted rows drop out of the index
        Index(
            "uq_labs_active_order_item",
            "order_id",
            "order_item_id",
            unique=True,
            sqlite_where=text("soft_deleted = 0"),
            postgresql_where=text("soft_deleted = false"),
        ),
        CheckConstraint("status IN ('sent','received','cancelled')", name="ck_labs_status"),
    )

    def __repr__(self):
        return f"<Lab(order_id={self.order_id}, item={self.order_item_id}, status={self.status})>"


# =========================================
# =============== Audit log ===============
# =========================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    user_id = Column(String(64), nullable=False)
    username = Column(String(100), nullable=False)
    user_role = Column(String(30), nullable=False)
    action = Column(String(40), nullable=False)
    resource = Column(String(40), nullable=False)
    resource_id = Column(String(64), nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    success = Column(Boolean, nullable=False, default=True)
    severity = Column(String(10), nullable=False, default="info")
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_user_ts", "user_id", "timestamp"),
        Index("ix_audit_logs_action_ts", "action", "timestamp"),
        Index("ix_audit_logs_resource_ts", "resource", "resource_id", "timestamp"),
        Index("ix_audit_logs_severity_ts", "severity", "timestamp"),
    )

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action={self.action}, resource={self.resource})>"


class DocCounter(Base):
    __tablename__ = "doc_counters"
    doc_type = Column(String, primary_key=True)   # "ORD", ...
    year = Column(Integer, primary_key=True)      # 0 = never resets
    seq = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("doc_type", "year", name="uq_doc_counters_type_year"),
    )


# =========================================
# ============== EVENT LISTENERS ==========
# =========================================
# (Declared AFTER classes they reference)

@event.listens_for(Dispatch, "before_insert")
@event.listens_for(Dispatch, "before_update")
def _dispatch_total_value(mapper, connection, target: Dispatch):
    """total_value is always finish_mtr * sale_rate, whatever the caller set."""
    finish = Decimal(str(target.finish_mtr or 0))
    rate = Decimal(str(target.sale_rate or 0))
    target.total_value = finish * rate


@event.listens_for(AuditLog, "before_update")
def _audit_log_no_update(mapper, connection, target: AuditLog):
    raise ValueError(f"audit log {target.id} is immutable")


@event.listens_for(AuditLog, "before_delete")
def _audit_log_no_delete(mapper, connection, target: AuditLog):
    raise ValueError(f"audit log {target.id} can only be removed by the retention sweep")

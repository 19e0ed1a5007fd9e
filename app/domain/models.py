from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from app.infrastructure.database import Base

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True)  # UUID shared with the apps
    display_code = Column(String(8), index=True)  # short human code, collisions tolerated
    status = Column(String, default="Placed", index=True)

    user_id = Column(String, index=True)
    driver_id = Column(String, nullable=True, index=True)

    total_amount = Column(Numeric(12, 2), default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    estimated_time = Column(Integer, nullable=True)  # minutes
    admin_notes = Column(Text, nullable=True)
    payment_proof_url = Column(String, nullable=True)

    # {"lat": .., "lng": ..}
    delivery_location = Column(JSON, nullable=True)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    # Links to orders.public_id, not orders.id
    order_id = Column(String(36), index=True)
    menu_item_id = Column(Integer, nullable=True)
    quantity = Column(Integer, default=1)
    title = Column(String, nullable=True)
    price = Column(Numeric(12, 2), nullable=True)


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    price = Column(Numeric(12, 2), default=0)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=True)
    image_url = Column(String, nullable=True)


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True)  # auth user id
    role = Column(String, default="customer", index=True)  # customer | driver | admin
    fcm_token = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    full_name = Column(String, nullable=True)
    address = Column(String, nullable=True)
    last_location_json = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CrashLog(Base):
    __tablename__ = "crash_logs"
    __table_args__ = (UniqueConstraint("log_hash", "app_type", name="uq_crash_logs_hash_app"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=True)
    error_message = Column(String(500))
    error_stack = Column(Text)
    device_model = Column(String, nullable=True)
    os_version = Column(String, nullable=True)
    app_version = Column(String, nullable=True)
    app_type = Column(String, default="CLIENT")
    log_hash = Column(String, index=True)
    count = Column(Integer, default=1)
    last_seen = Column(DateTime(timezone=True), server_default=func.now())


class PaymentMethod(Base):
    __tablename__ = "payment_methods"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    details = Column(Text)


class AppSetting(Base):
    __tablename__ = "app_settings"

    key = Column(String, primary_key=True)
    value = Column(String)


class BotSession(Base):
    __tablename__ = "bot_sessions"

    key = Column(String, primary_key=True)  # "{user_id}:{chat_id}"
    session = Column(JSON)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=True)
    order_id = Column(String, nullable=True)
    rating = Column(Integer)
    comment = Column(Text, nullable=True)
    full_name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

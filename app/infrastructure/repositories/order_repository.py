import logging
import random
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import asc, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from app.domain.models import MenuItem, Order, OrderItem
from app.domain.order_status import ACTIVE_STATUSES, OrderStatus
from app.domain.schemas import OrderItemRecord, OrderRecord
from app.infrastructure.database import SessionLocal
from app.interfaces.IOrderRepository import IOrderRepository

logger = logging.getLogger(__name__)

# Columns a client may set when placing an order
PLACEABLE_FIELDS = {"user_id", "total_amount", "payment_proof_url", "delivery_location", "admin_notes"}
ITEM_FIELDS = {"menu_item_id", "quantity", "title", "price"}
ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]


def generate_display_code() -> str:
    """4-digit code shown to humans. Collisions are tolerated: id/public_id stay authoritative."""
    return str(random.randint(1000, 9999))


class PostgresOrderRepository(IOrderRepository):

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def get_order(self, order_id: int) -> Optional[OrderRecord]:
        session = self.session_factory()
        try:
            order = session.get(Order, order_id)
            return OrderRecord.model_validate(order) if order else None
        finally:
            session.close()

    def conditional_update(
        self,
        order_id: int,
        values: Dict[str, Any],
        allowed_statuses: Optional[Iterable[str]] = None,
    ) -> Optional[OrderRecord]:
        session = self.session_factory()
        try:
            stmt = update(Order.__table__).where(Order.__table__.c.id == order_id)
            if allowed_statuses is not None:
                stmt = stmt.where(Order.__table__.c.status.in_(list(allowed_statuses)))
            stmt = stmt.values(**values).returning(*Order.__table__.c)

            row = session.execute(stmt).mappings().first()
            session.commit()
            return OrderRecord.model_validate(dict(row)) if row else None
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def get_items(self, public_id: str) -> List[OrderItemRecord]:
        if not public_id:
            return []
        session = self.session_factory()
        try:
            rows = session.execute(
                select(OrderItem.id, OrderItem.order_id, OrderItem.quantity,
                       func.coalesce(MenuItem.title, OrderItem.title).label("title"))
                .outerjoin(MenuItem, MenuItem.id == OrderItem.menu_item_id)
                .where(OrderItem.order_id == public_id)
                .order_by(asc(OrderItem.id))
            ).mappings().all()
            return [OrderItemRecord.model_validate(dict(r)) for r in rows]
        except SQLAlchemyError as e:
            # Items are decoration on the order card; the card still goes out without them
            logger.error(f"❌ DB Read Error (items of {public_id}): {e}")
            return []
        finally:
            session.close()

    def list_active(self, limit: int = 50) -> List[OrderRecord]:
        session = self.session_factory()
        try:
            orders = (
                session.query(Order)
                .filter(Order.status.in_(ACTIVE_VALUES))
                .order_by(asc(Order.created_at), asc(Order.id))
                .limit(limit)
                .all()
            )
            return [OrderRecord.model_validate(o) for o in orders]
        finally:
            session.close()

    def list_since(self, since: datetime) -> List[OrderRecord]:
        session = self.session_factory()
        try:
            orders = session.query(Order).filter(Order.created_at >= since).all()
            return [OrderRecord.model_validate(o) for o in orders]
        finally:
            session.close()

    def count_active(self) -> int:
        session = self.session_factory()
        try:
            return session.query(func.count(Order.id)).filter(Order.status.in_(ACTIVE_VALUES)).scalar() or 0
        finally:
            session.close()

    def place_order(self, order_data: Dict[str, Any], items_data: List[Dict[str, Any]]) -> OrderRecord:
        """Insert the order and its items in one transaction."""
        session = self.session_factory()
        try:
            fields = {k: v for k, v in (order_data or {}).items() if k in PLACEABLE_FIELDS}
            order = Order(
                **fields,
                status=OrderStatus.PLACED.value,
                public_id=str(uuid.uuid4()),
                display_code=generate_display_code(),
            )
            session.add(order)
            session.flush()

            for item in items_data or []:
                session.add(OrderItem(
                    order_id=order.public_id,
                    **{k: v for k, v in item.items() if k in ITEM_FIELDS},
                ))

            session.commit()
            session.refresh(order)
            return OrderRecord.model_validate(order)
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def backfill_identifiers(self) -> int:
        """Assign public_id / display_code to legacy rows that never got one."""
        session = self.session_factory()
        try:
            legacy = session.query(Order).filter(
                (Order.public_id.is_(None)) | (Order.display_code.is_(None))
            ).all()
            for order in legacy:
                if not order.public_id:
                    order.public_id = str(uuid.uuid4())
                if not order.display_code:
                    order.display_code = generate_display_code()
            session.commit()
            if legacy:
                logger.info(f"✅ Backfilled identifiers on {len(legacy)} orders")
            return len(legacy)
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

"""Operator-side tables: crash telemetry, reviews, settings, menu items and payment methods."""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import asc, desc, select, update
from sqlalchemy.exc import SQLAlchemyError

from app.domain.models import AppSetting, CrashLog, MenuItem, PaymentMethod, Review
from app.domain.schemas import CrashLogRecord, ReviewRecord
from app.infrastructure.database import SessionLocal

logger = logging.getLogger(__name__)

class AdminRepository:

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    # --- Crash telemetry ---
    def find_crash(self, log_hash: str, app_type: str) -> Optional[CrashLogRecord]:
        session = self.session_factory()
        try:
            row = (
                session.query(CrashLog)
                .filter(CrashLog.log_hash == log_hash, CrashLog.app_type == app_type)
                .first()
            )
            return CrashLogRecord.model_validate(row) if row else None
        finally:
            session.close()

    def bump_crash(self, crash_id: int, user_id: Optional[str]) -> int:
        """Atomic count + 1 so concurrent reports never lose an occurrence."""
        session = self.session_factory()
        try:
            new_count = session.execute(
                update(CrashLog)
                .where(CrashLog.id == crash_id)
                .values(count=CrashLog.count + 1, last_seen=datetime.now(timezone.utc), user_id=user_id)
                .returning(CrashLog.count)
                .execution_options(synchronize_session=False)
            ).scalar_one()
            session.commit()
            return new_count
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def insert_crash(self, **fields) -> CrashLogRecord:
        session = self.session_factory()
        try:
            crash = CrashLog(count=1, last_seen=datetime.now(timezone.utc), **fields)
            session.add(crash)
            session.commit()
            session.refresh(crash)
            return CrashLogRecord.model_validate(crash)
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def top_crashes(self, limit: int = 15) -> List[CrashLogRecord]:
        session = self.session_factory()
        try:
            rows = (
                session.query(CrashLog)
                .order_by(desc(CrashLog.count), desc(CrashLog.last_seen))
                .limit(limit)
                .all()
            )
            return [CrashLogRecord.model_validate(r) for r in rows]
        finally:
            session.close()

    # --- Reviews ---
    def add_review(self, user_id, order_id, rating: int, comment, full_name) -> ReviewRecord:
        session = self.session_factory()
        try:
            review = Review(
                user_id=user_id,
                order_id=str(order_id) if order_id is not None else None,
                rating=rating,
                comment=comment,
                full_name=full_name,
            )
            session.add(review)
            session.commit()
            session.refresh(review)
            return ReviewRecord.model_validate(review)
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def latest_reviews(self, limit: int = 15) -> List[ReviewRecord]:
        session = self.session_factory()
        try:
            rows = session.query(Review).order_by(desc(Review.created_at), desc(Review.id)).limit(limit).all()
            return [ReviewRecord.model_validate(r) for r in rows]
        finally:
            session.close()

    # --- App settings ---
    def get_setting(self, key: str) -> Optional[str]:
        session = self.session_factory()
        try:
            row = session.get(AppSetting, key)
            return row.value if row else None
        finally:
            session.close()

    def set_setting(self, key: str, value: str) -> None:
        session = self.session_factory()
        try:
            session.merge(AppSetting(key=key, value=value))
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> None:
        session = self.session_factory()
        try:
            session.execute(select(AppSetting.key).limit(1)).all()
        finally:
            session.close()

    # --- Listings ---
    def list_menu_items(self) -> List[MenuItem]:
        session = self.session_factory()
        try:
            return session.query(MenuItem).order_by(asc(MenuItem.id)).all()
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Read Error (menu): {e}")
            return []
        finally:
            session.close()

    def list_payment_methods(self) -> List[PaymentMethod]:
        session = self.session_factory()
        try:
            return session.query(PaymentMethod).order_by(asc(PaymentMethod.id)).all()
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Read Error (payment methods): {e}")
            return []
        finally:
            session.close()

    # --- Menu & payment management ---
    def add_menu_item(self, title: str, price: Decimal, description=None, category=None, image_url=None) -> MenuItem:
        session = self.session_factory()
        try:
            item = MenuItem(title=title, price=price, description=description, category=category, image_url=image_url)
            session.add(item)
            session.commit()
            session.refresh(item)
            return item
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def add_payment_method(self, name: str, details: str) -> PaymentMethod:
        session = self.session_factory()
        try:
            method = PaymentMethod(name=name, details=details)
            session.add(method)
            session.commit()
            session.refresh(method)
            return method
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

    def delete_payment_method(self, name: str) -> int:
        """Removes every method with this exact name. Returns how many went."""
        session = self.session_factory()
        try:
            removed = session.query(PaymentMethod).filter(PaymentMethod.name == name).delete(synchronize_session=False)
            session.commit()
            return removed
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

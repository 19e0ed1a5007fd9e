from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from app.domain.schemas import OrderItemRecord, OrderRecord

class IOrderRepository(ABC):
    @abstractmethod
    def get_order(self, order_id: int) -> Optional[OrderRecord]:
        pass

    @abstractmethod
    def conditional_update(
        self,
        order_id: int,
        values: Dict[str, Any],
        allowed_statuses: Optional[Iterable[str]] = None,
    ) -> Optional[OrderRecord]:
        """UPDATE ... WHERE id = :id AND status IN :allowed RETURNING *. None when no row matched."""
        pass

    @abstractmethod
    def get_items(self, public_id: str) -> List[OrderItemRecord]:
        pass

    @abstractmethod
    def list_active(self, limit: int = 50) -> List[OrderRecord]:
        pass

    @abstractmethod
    def list_since(self, since: datetime) -> List[OrderRecord]:
        pass

    @abstractmethod
    def count_active(self) -> int:
        pass

    @abstractmethod
    def place_order(self, order_data: Dict[str, Any], items_data: List[Dict[str, Any]]) -> OrderRecord:
        pass

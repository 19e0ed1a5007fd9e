from abc import ABC, abstractmethod
from typing import Dict, List, Optional

class IPushService(ABC):
    """Best-effort push delivery. Implementations never raise on send failures."""

    @abstractmethod
    async def send_to_token(self, token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> Optional[str]:
        pass

    @abstractmethod
    async def send_to_user(self, user_id: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> Optional[str]:
        pass

    @abstractmethod
    async def send_to_role(self, role: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> int:
        pass

    @abstractmethod
    async def send_multicast(self, tokens: List[str], title: str, body: str) -> int:
        pass

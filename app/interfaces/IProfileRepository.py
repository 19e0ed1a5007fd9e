from abc import ABC, abstractmethod
from typing import List, Optional

from app.domain.schemas import ProfileRecord

class IProfileRepository(ABC):
    @abstractmethod
    def get_profile(self, profile_id: str) -> Optional[ProfileRecord]:
        pass

    @abstractmethod
    def list_by_role(self, role: str) -> List[ProfileRecord]:
        pass

    @abstractmethod
    def tokens_by_role(self, role: str) -> List[str]:
        pass

    @abstractmethod
    def all_tokens(self) -> List[str]:
        pass

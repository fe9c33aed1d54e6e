"""
Storage collaborator contract for the quote engine.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from .models import Quote


class QuoteStorage(ABC):
    """
    Persistence boundary used by the quote engine.

    Implementations must enforce a uniqueness constraint on
    ``(owner_id, quote_number)`` and report a violation of it as
    ``UniquenessViolation``; that constraint is the only arbiter of numbering
    collisions. Connection failures are reported as ``StorageUnavailable``.
    """

    @abstractmethod
    async def get_max_quote_number(self, owner_id: str, period: str) -> Optional[str]:
        """返回该租户在该期间内序号最大的报价编号，没有则返回 None"""

    @abstractmethod
    async def insert_quote(self, quote: Quote) -> Quote:
        """原子插入报价行及其服务项，编号冲突时抛出 UniquenessViolation"""

    @abstractmethod
    async def update_quote(self, quote: Quote, replace_items: bool = False) -> Quote:
        """按ID更新报价；replace_items 为真时先删除再插入全部服务项"""

    @abstractmethod
    async def get_quote(self, quote_id: str) -> Optional[Quote]:
        """按ID读取报价"""

    @abstractmethod
    async def list_quotes(self, owner_id: Optional[str] = None) -> List[Quote]:
        """列出报价（按创建时间倒序），owner_id 为空时返回全部租户"""

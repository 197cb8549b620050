from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.utils.logger import get_logger


class BaseService:
    """Store over a caller-owned session.

    Stores never commit or roll back: the session (and its transaction)
    belongs to the unit of work that created them.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = get_logger(self.__class__.__name__)

    async def flush(self) -> None:
        """Push pending changes so constraint violations surface in place."""
        await self.db.flush()

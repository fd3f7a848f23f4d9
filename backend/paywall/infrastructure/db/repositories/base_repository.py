"""
Base Repository for the Paywall Backend

Generic async repository bound to a caller-owned session.
Repositories flush; the caller decides when to commit.
"""

from typing import TypeVar, Generic, Optional, Type
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from paywall.infrastructure.exceptions import DuplicateError


# Type variable for generic repository
ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Generic async repository with the operations every table needs.

    Args:
        model: The SQLModel class to operate on
        session: Async database session
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self._model = model
        self._session = session

    async def get_by_id(self, id: UUID) -> Optional[ModelType]:
        """
        Get a single record by its primary key.

        Args:
            id: UUID primary key

        Returns:
            Model instance or None if not found
        """
        return await self._session.get(self._model, id)

    async def save(self, db_obj: ModelType) -> ModelType:
        """Add or update a record and flush it."""
        self._session.add(db_obj)
        await self._session.flush()
        return db_obj

    async def create_unique(self, db_obj: ModelType) -> ModelType:
        """
        Insert a record inside a SAVEPOINT.

        A unique-constraint violation rolls back only the savepoint and is
        raised as DuplicateError, leaving the surrounding transaction usable.

        Raises:
            DuplicateError: A row with the same unique key already exists
        """
        # Pending changes must not be lost with the savepoint
        await self._session.flush()
        try:
            async with self._session.begin_nested():
                self._session.add(db_obj)
                await self._session.flush()
        except IntegrityError as e:
            raise DuplicateError(
                f"Duplicate {self._model.__tablename__} row",
                operation="insert",
                table=self._model.__tablename__,
                original_error=e,
            )
        return db_obj

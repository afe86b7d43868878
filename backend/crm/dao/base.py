"""
Base Data Access Object (DAO) class.

WHY: The DAO pattern separates database operations from business logic,
making the services testable and keeping every query org-scoped in one place.
"""

from typing import Generic, TypeVar, Type, Optional, List, Any
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from crm.models.base import Base

# Type variable for model class
ModelType = TypeVar("ModelType", bound=Base)


class BaseDAO(Generic[ModelType]):
    """
    Base Data Access Object providing CRUD operations for all models.

    WHY: Using generics allows type-safe reuse across different models.
    Every tenant-owned model carries org_id, and the *_and_org / by_org
    helpers are what services use; the unscoped helpers exist for
    background jobs that sweep all organizations.

    Type Parameters:
        ModelType: The SQLAlchemy model class this DAO manages
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """
        Initialize DAO with model class and database session.

        Args:
            model: The SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    async def create(self, **kwargs: Any) -> ModelType:
        """
        Create a new record.

        Args:
            **kwargs: Field values for the new record

        Returns:
            The created model instance with database-generated fields populated

        Raises:
            IntegrityError: If unique constraints are violated
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()  # Flush to get auto-generated fields
        await self.session.refresh(instance)
        return instance

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        """
        Retrieve a single record by primary key.

        Returns:
            The model instance if found, None otherwise
        """
        result = await self.session.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def get_all(self, skip: int = 0, limit: int = 100, **filters: Any) -> List[ModelType]:
        """
        Retrieve multiple records with optional pagination and equality filters.

        Args:
            skip: Number of records to skip (for pagination)
            limit: Maximum number of records to return
            **filters: Field name to value filters (e.g., org_id=1)

        Returns:
            List of model instances matching the filters, newest id first
        """
        query = select(self.model)

        for field, value in filters.items():
            if hasattr(self.model, field):
                query = query.where(getattr(self.model, field) == value)

        query = query.order_by(self.model.id.desc()).offset(skip).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def update_instance(self, instance: ModelType, **kwargs: Any) -> ModelType:
        """
        Apply field changes to a loaded instance and flush.

        WHY: Services already hold the (org-checked) instance; updating it in
        place keeps the identity map consistent instead of issuing a blind
        UPDATE by id.

        Args:
            instance: Loaded model instance
            **kwargs: Fields to update

        Returns:
            The refreshed instance
        """
        for field, value in kwargs.items():
            setattr(instance, field, value)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def delete_instance(self, instance: ModelType) -> None:
        """Delete a loaded instance (ORM cascades apply)."""
        await self.session.delete(instance)
        await self.session.flush()

    async def count(self, **filters: Any) -> int:
        """
        Count records matching filters.

        Args:
            **filters: Field name to value filters

        Returns:
            Number of records matching the filters
        """
        query = select(func.count()).select_from(self.model)

        for field, value in filters.items():
            if hasattr(self.model, field):
                query = query.where(getattr(self.model, field) == value)

        result = await self.session.execute(query)
        return int(result.scalar_one())

    async def exists(self, **filters: Any) -> bool:
        """True if at least one record matches the filters."""
        return await self.count(**filters) > 0

    async def get_by_org(self, org_id: int, skip: int = 0, limit: int = 100) -> List[ModelType]:
        """
        Retrieve records for a specific organization (multi-tenant support).

        Raises:
            AttributeError: If the model doesn't have an org_id field
        """
        if not hasattr(self.model, "org_id"):
            raise AttributeError(
                f"{self.model.__name__} is not a multi-tenant model (no org_id field)"
            )

        return await self.get_all(skip=skip, limit=limit, org_id=org_id)

    async def get_by_id_and_org(self, id: int, org_id: int) -> Optional[ModelType]:
        """
        Retrieve a record by ID, ensuring it belongs to the specified organization.

        WHY: Critical for preventing cross-organization data access.
        Always use this method instead of get_by_id in request handlers.

        Returns:
            The model instance if found and belongs to org, None otherwise

        Raises:
            AttributeError: If the model doesn't have an org_id field
        """
        if not hasattr(self.model, "org_id"):
            raise AttributeError(
                f"{self.model.__name__} is not a multi-tenant model (no org_id field)"
            )

        result = await self.session.execute(
            select(self.model).where(
                self.model.id == id,
                self.model.org_id == org_id,
            )
        )
        return result.scalar_one_or_none()

"""Persistence manager: the single choke point for database access.

Every write is validated through its Pydantic write schema first (with the
role catalog in the validation context), then executed inside one
transactional session. Storage failures are translated into the domain
error taxonomy:

- unique-constraint violations -> ``DuplicateFieldError``
- schema rejections -> ``ValidationError`` with per-field detail
- anything else SQLAlchemy raises -> ``StorageError``

Status and stage changes are written as an explicit two-phase operation:
read the stored row, check the transition in application code, then issue
an ``UPDATE ... WHERE status = <prior>``. When another writer got there
first the conditional update matches nothing and ``ConcurrencyError`` is
raised instead of silently overwriting. No write is retried.
"""

import logging
import re
from collections.abc import AsyncGenerator, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..core.config import Settings
from ..core.database import build_engine, build_session_factory, close_db, init_db, session_scope
from ..core.errors import (
    ConcurrencyError,
    DuplicateFieldError,
    NotFoundError,
    StorageError,
    TrackerError,
    ValidationError,
)
from ..models import (
    AssignmentStatus,
    Base,
    ControlAssessment,
    Engagement,
    EngagementControlProfile,
    EngagementRole,
    Finding,
    Message,
    MessageStatus,
    Notification,
    Organization,
    OrganizationDomain,
    OrganizationRole,
    OrganizationStatus,
    Permission,
    RemediationPlan,
    RemediationStatus,
    RoleAssignment,
    SystemRole,
    User,
    UserOrganizationRole,
    utcnow,
)
from ..roles import RoleCatalog
from ..schemas.base import PatchModel
from ..schemas.compliance import AssessmentInput
from ..schemas.engagements import (
    ControlProfileCreate,
    ControlProfileUpdate,
    EngagementCreate,
    EngagementUpdate,
    FindingCreate,
    FindingUpdate,
    RemediationPlanCreate,
    RemediationPlanUpdate,
)
from ..schemas.messages import (
    MessageCreate,
    MessageUpdate,
    NotificationCreate,
    NotificationUpdate,
)
from ..schemas.organizations import OrganizationCreate, OrganizationUpdate
from ..schemas.roles import (
    EngagementRoleCreate,
    PermissionCreate,
    RoleAssignmentCreate,
    RoleDefinitionCreate,
    UserOrganizationRoleCreate,
    UserOrganizationRoleUpdate,
)
from ..schemas.users import UserCreate, UserUpdate
from . import lifecycle

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", bound=Base)
SchemaT = TypeVar("SchemaT", bound=BaseModel)

ROLE_DEFINITION_MODELS = {
    "system": SystemRole,
    "organization": OrganizationRole,
    "engagement": EngagementRole,
}

# Organizations whose domains still count when checking for collisions
DOMAIN_OWNING_STATUSES = tuple(
    s.value for s in OrganizationStatus if s != OrganizationStatus.ARCHIVED
)

_PG_DUPLICATE = re.compile(r"Key \((?P<field>[^)]+)\)=\((?P<value>[^)]*)\)")
_SQLITE_DUPLICATE = re.compile(r"UNIQUE constraint failed: (?P<columns>[\w., ]+)")
_NOT_NULL = re.compile(
    r'(?:NOT NULL constraint failed: (?P<column>[\w.]+)'
    r'|null value in column "(?P<pg_column>\w+)")'
)


# =============================================================================
# ERROR TRANSLATION
# =============================================================================


def translate_schema_error(exc: SchemaValidationError) -> ValidationError:
    """Turn a Pydantic rejection into a ``ValidationError`` with field detail."""
    field_errors = [
        {
            "field": ".".join(str(part) for part in err["loc"]) or None,
            "message": err["msg"],
            "code": err["type"],
        }
        for err in exc.errors()
    ]
    summary = "; ".join(
        f"{e['field']}: {e['message']}" if e["field"] else e["message"]
        for e in field_errors
    )
    return ValidationError(f"Validation failed: {summary}", field_errors=field_errors)


def translate_integrity_error(exc: IntegrityError, values: dict | None = None) -> TrackerError:
    """Map a unique-constraint violation to ``DuplicateFieldError``."""
    message = str(exc.orig) if exc.orig is not None else str(exc)
    values = values or {}

    match = _PG_DUPLICATE.search(message)
    if match:
        field = match.group("field").replace(" ", "")
        return DuplicateFieldError(field, match.group("value"))

    match = _SQLITE_DUPLICATE.search(message)
    if match:
        columns = [c.strip().split(".")[-1] for c in match.group("columns").split(",")]
        field = ",".join(columns)
        if len(columns) == 1:
            value = values.get(columns[0])
        else:
            value = ",".join(str(values.get(c)) for c in columns)
        return DuplicateFieldError(field, value)

    lowered = message.lower()
    if "duplicate" in lowered or "unique" in lowered:
        return DuplicateFieldError("unknown", None, message=f"Duplicate value: {message}")
    match = _NOT_NULL.search(message)
    if match:
        field = (match.group("column") or match.group("pg_column")).split(".")[-1]
        return ValidationError.for_field(field, f"{field} is required")
    return StorageError(f"Integrity violation: {message}")


def row_values(model: BaseModel, fields: Sequence[str] | None = None) -> dict[str, Any]:
    """Column values for a validated schema instance.

    Nested documents are stored in their JSON form; scalars keep their
    Python types so datetimes reach ``DateTime`` columns intact.
    """
    python = model.model_dump()
    as_json = model.model_dump(mode="json")
    keys = fields if fields is not None else list(python)
    return {
        key: as_json[key] if isinstance(python[key], (dict, list)) else python[key]
        for key in keys
    }


# =============================================================================
# PERSISTENCE MANAGER
# =============================================================================


class PersistenceManager:
    """Thin data-access facade over an async SQLAlchemy engine."""

    def __init__(
        self,
        settings: Settings,
        catalog: RoleCatalog | None = None,
        engine: AsyncEngine | None = None,
    ):
        self.settings = settings
        self.catalog = catalog or RoleCatalog.from_settings(settings)
        self.engine = engine
        self.session_factory: async_sessionmaker[AsyncSession] | None = None
        self.initialized = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """Build the engine (unless injected) and create the schema."""
        if self.initialized:
            return
        if self.engine is None:
            self.engine = build_engine(self.settings)
        self.session_factory = build_session_factory(self.engine)
        if self.settings.database_create_schema:
            try:
                await init_db(self.engine)
            except SQLAlchemyError as e:
                logger.error(f"Failed to create database schema: {e}")
                raise StorageError(f"Failed to initialize database: {e}") from e
        self.initialized = True
        logger.info("Persistence manager initialized")

    async def close(self) -> None:
        if self.engine is not None:
            await close_db(self.engine)
        self.initialized = False
        logger.info("Persistence manager closed")

    async def health_check(self) -> dict[str, Any]:
        """Report {status, initialized, connected, backing_store_state}."""
        if not self.initialized or self.engine is None:
            return {
                "status": "unhealthy",
                "initialized": False,
                "connected": False,
                "backing_store_state": "uninitialized",
            }
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.warning(f"Database health check failed: {e}")
            return {
                "status": "unhealthy",
                "initialized": True,
                "connected": False,
                "backing_store_state": "disconnected",
            }
        return {
            "status": "healthy",
            "initialized": True,
            "connected": True,
            "backing_store_state": "connected",
        }

    @asynccontextmanager
    async def session(self, values: dict | None = None) -> AsyncGenerator[AsyncSession, None]:
        """Transactional session with storage errors translated.

        ``values`` are the column values being written, used to name the
        offending value when the store does not report it.
        """
        if not self.initialized or self.session_factory is None:
            raise StorageError("Persistence manager is not initialized")
        try:
            async with session_scope(self.session_factory) as session:
                yield session
        except IntegrityError as e:
            raise translate_integrity_error(e, values) from e
        except SQLAlchemyError as e:
            raise StorageError(f"Database operation failed: {e}") from e

    def validate(self, schema: type[SchemaT], data: Any) -> SchemaT:
        """Run ``data`` through ``schema`` with the role catalog in context."""
        if isinstance(data, PatchModel):
            data = data.model_dump(include=data.model_fields_set)
        elif isinstance(data, BaseModel):
            data = data.model_dump()
        try:
            return schema.model_validate(data, context={"catalog": self.catalog})
        except SchemaValidationError as e:
            raise translate_schema_error(e) from e

    # =========================================================================
    # GENERIC HELPERS
    # =========================================================================

    async def scalars(self, stmt) -> list:
        async with self.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def scalar(self, stmt) -> Any:
        async with self.session() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def count(self, model: type[Base], *criteria) -> int:
        stmt = select(func.count()).select_from(model)
        if criteria:
            stmt = stmt.where(*criteria)
        return await self.scalar(stmt) or 0

    async def get(self, model: type[RowT], key: Any) -> RowT | None:
        async with self.session() as session:
            return await session.get(model, key)

    async def insert(self, model: type[RowT], values: dict[str, Any]) -> RowT:
        row = model(**values)
        async with self.session(values) as session:
            session.add(row)
        return row

    async def patch(
        self,
        model: type[RowT],
        key: Any,
        values: dict[str, Any],
        entity: str,
        after_write: Callable[[AsyncSession, RowT], Any] | None = None,
    ) -> RowT:
        """Set ``values`` on an existing row. No transition checks."""
        async with self.session(values) as session:
            row = await session.get(model, key)
            if row is None:
                raise NotFoundError(entity, key)
            for field, value in values.items():
                setattr(row, field, value)
            if after_write is not None:
                await after_write(session, row)
        return row

    async def transition(
        self,
        model: type[RowT],
        key: Any,
        values: dict[str, Any],
        entity: str,
        checks: dict[str, Callable[[Any, Any], None]],
        after_write: Callable[[AsyncSession, RowT], Any] | None = None,
    ) -> RowT:
        """Two-phase conditional write.

        ``checks`` maps a guarded field to the function validating a move
        from its stored value to the proposed one. Guarded fields present
        in ``values`` are checked against the row as read, and the UPDATE
        only applies while they still hold that value.
        """
        pk = model.__mapper__.primary_key[0]
        async with self.session(values) as session:
            row = await session.get(model, key)
            if row is None:
                raise NotFoundError(entity, key)

            guards = []
            for field, check in checks.items():
                if field in values:
                    prior = getattr(row, field)
                    check(prior, values[field])
                    guards.append(getattr(model, field) == prior)

            if not values:
                return row

            stmt = (
                update(model)
                .where(pk == key, *guards)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise ConcurrencyError(
                    f"{entity} {key} was modified concurrently; reload and retry",
                    entity=entity,
                    identifier=key,
                )
            await session.refresh(row)
            if after_write is not None:
                await after_write(session, row)
        return row

    # =========================================================================
    # ORGANIZATIONS
    # =========================================================================

    async def _sync_domains(self, session: AsyncSession, org: Organization) -> None:
        await session.execute(
            delete(OrganizationDomain).where(OrganizationDomain.organization_id == org.id)
        )
        for domain in org.org_domains or []:
            session.add(OrganizationDomain(organization_id=org.id, domain=domain))

    async def create_organization(self, data: OrganizationCreate | dict) -> Organization:
        payload = self.validate(OrganizationCreate, data)
        if not payload.id:
            raise ValidationError.for_field("id", "Organization id is required")
        if not payload.created_by:
            raise ValidationError.for_field("created_by", "created_by is required")
        values = row_values(payload)
        org = Organization(**values)
        async with self.session(values) as session:
            session.add(org)
            await session.flush()
            await self._sync_domains(session, org)
        return org

    async def update_organization(
        self, org_id: str, data: OrganizationUpdate | dict
    ) -> Organization:
        payload = self.validate(OrganizationUpdate, data)
        values = row_values(payload, fields=list(payload.model_fields_set))

        async def sync(session: AsyncSession, org: Organization) -> None:
            if "org_domains" in values:
                await self._sync_domains(session, org)

        return await self.transition(
            Organization,
            org_id,
            values,
            "Organization",
            checks={"status": lifecycle.check_organization_status},
            after_write=sync,
        )

    async def find_organization_by_id(self, org_id: str) -> Organization | None:
        return await self.get(Organization, org_id)

    async def organization_exists(self, org_id: str) -> bool:
        return await self.count(Organization, Organization.id == org_id) > 0

    async def list_organizations(
        self,
        status: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Organization]:
        stmt = select(Organization).order_by(Organization.name)
        if status:
            stmt = stmt.where(Organization.status == status)
        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)
        return await self.scalars(stmt)

    async def find_organizations_by_domain(
        self,
        domain: str,
        statuses: Sequence[str] | None = None,
    ) -> list[Organization]:
        stmt = (
            select(Organization)
            .join(OrganizationDomain, OrganizationDomain.organization_id == Organization.id)
            .where(OrganizationDomain.domain == domain.lower())
            .order_by(Organization.created_at)
        )
        if statuses:
            stmt = stmt.where(Organization.status.in_(list(statuses)))
        return await self.scalars(stmt)

    async def domain_conflicts(
        self,
        domains: Sequence[str],
        exclude_org_id: str | None = None,
    ) -> list[tuple[str, str]]:
        """(domain, owning organization id) pairs already claimed elsewhere."""
        if not domains:
            return []
        stmt = (
            select(OrganizationDomain.domain, OrganizationDomain.organization_id)
            .join(Organization, OrganizationDomain.organization_id == Organization.id)
            .where(
                OrganizationDomain.domain.in_([d.lower() for d in domains]),
                Organization.status.in_(DOMAIN_OWNING_STATUSES),
            )
        )
        if exclude_org_id:
            stmt = stmt.where(OrganizationDomain.organization_id != exclude_org_id)
        async with self.session() as session:
            result = await session.execute(stmt)
            return [(domain, org_id) for domain, org_id in result.all()]

    # =========================================================================
    # USERS
    # =========================================================================

    async def create_user(self, data: UserCreate | dict) -> User:
        payload = self.validate(UserCreate, data)
        if not payload.user_id:
            raise ValidationError.for_field("user_id", "user_id is required")
        return await self.insert(User, row_values(payload))

    async def update_user(self, user_id: str, data: UserUpdate | dict) -> User:
        payload = self.validate(UserUpdate, data)
        values = row_values(payload, fields=list(payload.model_fields_set))
        return await self.patch(User, user_id, values, "User")

    async def find_user_by_id(self, user_id: str) -> User | None:
        return await self.get(User, user_id)

    async def find_user_by_email(self, email: str) -> User | None:
        return await self.scalar(select(User).where(User.email == email.strip().lower()))

    async def count_users(self) -> int:
        return await self.count(User)

    async def list_users(
        self,
        organization_id: str | None = None,
        status: str | None = None,
    ) -> list[User]:
        stmt = select(User).order_by(User.last_name, User.first_name)
        if organization_id:
            stmt = stmt.where(User.organization_id == organization_id)
        if status:
            stmt = stmt.where(User.status == status)
        return await self.scalars(stmt)

    # =========================================================================
    # ENGAGEMENTS
    # =========================================================================

    async def create_engagement(self, data: EngagementCreate | dict) -> Engagement:
        payload = self.validate(EngagementCreate, data)
        if not payload.id:
            raise ValidationError.for_field("id", "Engagement id is required")
        return await self.insert(Engagement, row_values(payload))

    async def update_engagement(
        self, engagement_id: str, data: EngagementUpdate | dict
    ) -> Engagement:
        payload = self.validate(EngagementUpdate, data)
        values = row_values(payload, fields=list(payload.model_fields_set))
        return await self.transition(
            Engagement,
            engagement_id,
            values,
            "Engagement",
            checks={
                "status": lifecycle.check_engagement_status,
                "stage": lifecycle.check_engagement_stage,
            },
        )

    async def find_engagement_by_id(self, engagement_id: str) -> Engagement | None:
        return await self.get(Engagement, engagement_id)

    async def list_engagements(
        self,
        org: str | None = None,
        include_closed: bool = True,
    ) -> list[Engagement]:
        stmt = select(Engagement).order_by(Engagement.created_at.desc())
        if org:
            stmt = stmt.where(Engagement.org == org)
        if not include_closed:
            stmt = stmt.where(Engagement.status != "closed")
        return await self.scalars(stmt)

    async def engagement_ids_with_prefix(self, prefix: str) -> list[str]:
        stmt = select(Engagement.id).where(Engagement.id.startswith(prefix, autoescape=True))
        async with self.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # =========================================================================
    # CONTROL PROFILES
    # =========================================================================

    async def create_control_profile(
        self, data: ControlProfileCreate | dict
    ) -> EngagementControlProfile:
        payload = self.validate(ControlProfileCreate, data)
        return await self.insert(EngagementControlProfile, row_values(payload))

    async def update_control_profile(
        self, profile_id: str, data: ControlProfileUpdate | dict
    ) -> EngagementControlProfile:
        payload = self.validate(ControlProfileUpdate, data)
        values = row_values(payload, fields=list(payload.model_fields_set))
        return await self.transition(
            EngagementControlProfile,
            profile_id,
            values,
            "Control profile",
            checks={"status": lifecycle.check_control_status},
        )

    async def find_control_profile_by_id(self, profile_id: str) -> EngagementControlProfile | None:
        return await self.get(EngagementControlProfile, profile_id)

    async def list_control_profiles(
        self,
        engagement_id: str | None = None,
        control_owner: str | None = None,
        status: str | None = None,
        exclude_complete: bool = False,
    ) -> list[EngagementControlProfile]:
        stmt = select(EngagementControlProfile).order_by(EngagementControlProfile.requirement_id)
        if engagement_id:
            stmt = stmt.where(EngagementControlProfile.engagement_id == engagement_id)
        if control_owner:
            stmt = stmt.where(EngagementControlProfile.control_owner == control_owner.lower())
        if status:
            stmt = stmt.where(EngagementControlProfile.status == status)
        if exclude_complete:
            stmt = stmt.where(EngagementControlProfile.status != "complete")
        return await self.scalars(stmt)

    # =========================================================================
    # ROLE DEFINITIONS
    # =========================================================================

    async def create_permission(self, data: PermissionCreate | dict) -> Permission:
        payload = self.validate(PermissionCreate, data)
        return await self.insert(Permission, row_values(payload))

    async def find_permission(self, permission_id: str) -> Permission | None:
        return await self.get(Permission, permission_id)

    async def create_role_definition(
        self, kind: str, data: RoleDefinitionCreate | EngagementRoleCreate | dict
    ):
        model = ROLE_DEFINITION_MODELS.get(kind)
        if model is None:
            raise ValidationError.for_field("kind", f"Unknown role definition kind: {kind}")
        schema = EngagementRoleCreate if model is EngagementRole else RoleDefinitionCreate
        payload = self.validate(schema, data)
        return await self.insert(model, row_values(payload))

    async def find_role_definition(self, kind: str, role_id: str):
        model = ROLE_DEFINITION_MODELS.get(kind)
        if model is None:
            raise ValidationError.for_field("kind", f"Unknown role definition kind: {kind}")
        return await self.get(model, role_id)

    async def list_role_definitions(self, kind: str, active_only: bool = True) -> list:
        model = ROLE_DEFINITION_MODELS.get(kind)
        if model is None:
            raise ValidationError.for_field("kind", f"Unknown role definition kind: {kind}")
        stmt = select(model).order_by(model.id)
        if active_only:
            stmt = stmt.where(model.active.is_(True))
        return await self.scalars(stmt)

    # =========================================================================
    # ROLE ASSIGNMENTS
    # =========================================================================

    async def create_role_assignment(self, data: RoleAssignmentCreate | dict) -> RoleAssignment:
        payload = self.validate(RoleAssignmentCreate, data)
        values = row_values(payload)
        context = values.pop("context") or {}
        values["organization_id"] = context.get("organization_id")
        values["engagement_id"] = context.get("engagement_id")
        return await self.insert(RoleAssignment, values)

    async def find_active_assignments_by_user(
        self, user_id: str, now: datetime | None = None
    ) -> list[RoleAssignment]:
        """Active assignments whose expiry, if any, has not passed."""
        now = now or utcnow()
        return await self.scalars(
            select(RoleAssignment).where(
                RoleAssignment.user_id == user_id,
                RoleAssignment.active.is_(True),
                (RoleAssignment.expires_at.is_(None)) | (RoleAssignment.expires_at > now),
            )
        )

    async def deactivate_role_assignment(self, assignment_id: str) -> RoleAssignment:
        return await self.patch(RoleAssignment, assignment_id, {"active": False}, "Role assignment")

    async def delete_expired_role_assignments(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        async with self.session() as session:
            result = await session.execute(
                delete(RoleAssignment).where(
                    RoleAssignment.expires_at.is_not(None),
                    RoleAssignment.expires_at <= now,
                )
            )
            return result.rowcount or 0

    async def create_user_organization_role(
        self, data: UserOrganizationRoleCreate | dict
    ) -> UserOrganizationRole:
        payload = self.validate(UserOrganizationRoleCreate, data)
        return await self.insert(UserOrganizationRole, row_values(payload))

    async def update_user_organization_role(
        self, assignment_id: str, data: UserOrganizationRoleUpdate | dict
    ) -> UserOrganizationRole:
        payload = self.validate(UserOrganizationRoleUpdate, data)
        values = row_values(payload, fields=list(payload.model_fields_set))
        return await self.patch(
            UserOrganizationRole, assignment_id, values, "Organization role assignment"
        )

    async def find_user_organization_role(
        self, user_id: str, organization_id: str
    ) -> UserOrganizationRole | None:
        return await self.scalar(
            select(UserOrganizationRole).where(
                UserOrganizationRole.user_id == user_id,
                UserOrganizationRole.organization_id == organization_id,
            )
        )

    async def delete_user_organization_role(self, user_id: str, organization_id: str) -> bool:
        async with self.session() as session:
            result = await session.execute(
                delete(UserOrganizationRole).where(
                    UserOrganizationRole.user_id == user_id,
                    UserOrganizationRole.organization_id == organization_id,
                )
            )
            return bool(result.rowcount)

    async def list_user_organization_roles(
        self,
        user_id: str | None = None,
        organization_id: str | None = None,
    ) -> list[UserOrganizationRole]:
        stmt = select(UserOrganizationRole).order_by(UserOrganizationRole.assigned_at)
        if user_id:
            stmt = stmt.where(UserOrganizationRole.user_id == user_id)
        if organization_id:
            stmt = stmt.where(UserOrganizationRole.organization_id == organization_id)
        return await self.scalars(stmt)

    async def expire_user_organization_roles(self, now: datetime | None = None) -> int:
        """Mark lapsed organization role sets as expired."""
        now = now or utcnow()
        async with self.session() as session:
            result = await session.execute(
                update(UserOrganizationRole)
                .where(
                    UserOrganizationRole.expires_at.is_not(None),
                    UserOrganizationRole.expires_at <= now,
                    UserOrganizationRole.status == AssignmentStatus.ACTIVE.value,
                )
                .values(status=AssignmentStatus.EXPIRED.value)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    # =========================================================================
    # MESSAGES & NOTIFICATIONS
    # =========================================================================

    async def create_message(self, data: MessageCreate | dict) -> Message:
        payload = self.validate(MessageCreate, data)
        values = row_values(payload)
        if payload.status == "sent":
            values["meta"] = {**values.get("meta", {}), "sent": utcnow().isoformat()}
        else:
            values.setdefault("meta", {})
        return await self.insert(Message, values)

    async def update_message(self, message_id: str, data: MessageUpdate | dict) -> Message:
        payload = self.validate(MessageUpdate, data)
        values = row_values(payload, fields=list(payload.model_fields_set))
        return await self.patch(Message, message_id, values, "Message")

    async def find_message_by_id(self, message_id: str) -> Message | None:
        return await self.get(Message, message_id)

    async def list_messages(
        self,
        engagement_id: str | None = None,
        control_id: str | None = None,
        thread_id: str | None = None,
        include_deleted: bool = False,
        oldest_first: bool = False,
    ) -> list[Message]:
        stmt = select(Message)
        if engagement_id:
            stmt = stmt.where(Message.engagement_id == engagement_id)
        if control_id:
            stmt = stmt.where(Message.control_id == control_id)
        if thread_id:
            stmt = stmt.where(Message.thread_id == thread_id)
        if not include_deleted:
            stmt = stmt.where(Message.status != MessageStatus.DELETED.value)
        order = Message.created_at.asc() if oldest_first else Message.created_at.desc()
        return await self.scalars(stmt.order_by(order))

    async def list_sent_messages_for(self, recipient: str) -> list[Message]:
        """Sent messages addressed to ``recipient`` or broadcast to everyone."""
        stmt = (
            select(Message)
            .where(
                Message.status == MessageStatus.SENT.value,
                or_(Message.recipient == recipient, Message.recipient.is_(None)),
            )
            .order_by(Message.created_at.desc())
        )
        return await self.scalars(stmt)

    async def search_messages(
        self, term: str, engagement_id: str | None = None
    ) -> list[Message]:
        stmt = select(Message).where(
            func.lower(Message.message).contains(term.lower(), autoescape=True),
            Message.status != MessageStatus.DELETED.value,
        )
        if engagement_id:
            stmt = stmt.where(Message.engagement_id == engagement_id)
        return await self.scalars(stmt.order_by(Message.created_at.desc()))

    async def create_notification(self, data: NotificationCreate | dict) -> Notification:
        payload = self.validate(NotificationCreate, data)
        return await self.insert(Notification, row_values(payload))

    async def find_notification_by_id(self, notification_id: str) -> Notification | None:
        return await self.get(Notification, notification_id)

    async def update_notification(
        self, notification_id: str, data: NotificationUpdate | dict
    ) -> Notification:
        payload = self.validate(NotificationUpdate, data)
        values = row_values(payload, fields=list(payload.model_fields_set))
        return await self.patch(Notification, notification_id, values, "Notification")

    async def list_notifications(
        self, user_id: str, unread_only: bool = False
    ) -> list[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.read.is_(False))
        return await self.scalars(stmt.order_by(Notification.created_at.desc()))

    # =========================================================================
    # COMPLIANCE ASSESSMENTS
    # =========================================================================

    async def upsert_assessment(
        self, framework: str, control_id: str, data: AssessmentInput | dict
    ) -> ControlAssessment:
        """Store the latest assessment for a control, replacing any earlier one."""
        payload = self.validate(AssessmentInput, data)
        values = row_values(payload)
        values["assessment_date"] = utcnow()
        async with self.session(values) as session:
            row = await session.scalar(
                select(ControlAssessment).where(
                    ControlAssessment.framework == framework,
                    ControlAssessment.control_id == control_id,
                )
            )
            if row is None:
                row = ControlAssessment(framework=framework, control_id=control_id, **values)
                session.add(row)
            else:
                for field, value in values.items():
                    setattr(row, field, value)
        return row

    async def list_assessments(self, framework: str | None = None) -> list[ControlAssessment]:
        stmt = select(ControlAssessment).order_by(ControlAssessment.assessment_date.desc())
        if framework:
            stmt = stmt.where(ControlAssessment.framework == framework)
        return await self.scalars(stmt)

    # =========================================================================
    # FINDINGS & REMEDIATION
    # =========================================================================

    async def create_finding(self, data: FindingCreate | dict) -> Finding:
        payload = self.validate(FindingCreate, data)
        return await self.insert(Finding, row_values(payload))

    async def find_finding_by_id(self, finding_id: str) -> Finding | None:
        return await self.get(Finding, finding_id)

    async def create_remediation_plan(
        self, finding_id: str, data: RemediationPlanCreate | dict
    ) -> RemediationPlan:
        payload = self.validate(RemediationPlanCreate, data)
        values = row_values(payload)
        values["finding_id"] = finding_id
        return await self.insert(RemediationPlan, values)

    async def find_remediation_plan_by_id(self, plan_id: str) -> RemediationPlan | None:
        return await self.get(RemediationPlan, plan_id)

    async def update_finding(self, finding_id: str, data: FindingUpdate | dict) -> Finding:
        payload = self.validate(FindingUpdate, data)
        values = row_values(payload, fields=list(payload.model_fields_set))
        return await self.patch(Finding, finding_id, values, "Finding")

    async def list_findings(
        self, engagement_id: str | None = None, status: str | None = None
    ) -> list[Finding]:
        stmt = select(Finding).order_by(Finding.created_at)
        if engagement_id:
            stmt = stmt.where(Finding.engagement_id == engagement_id)
        if status:
            stmt = stmt.where(Finding.status == status)
        return await self.scalars(stmt)

    async def update_remediation_plan(
        self, plan_id: str, data: RemediationPlanUpdate | dict
    ) -> RemediationPlan:
        payload = self.validate(RemediationPlanUpdate, data)
        values = row_values(payload, fields=list(payload.model_fields_set))
        return await self.patch(RemediationPlan, plan_id, values, "Remediation plan")

    async def list_remediation_plans(self, finding_id: str) -> list[RemediationPlan]:
        return await self.scalars(
            select(RemediationPlan)
            .where(RemediationPlan.finding_id == finding_id)
            .order_by(RemediationPlan.created_at)
        )

    async def list_open_remediation_plans(self) -> list[RemediationPlan]:
        """Plans that have not reached completion yet."""
        return await self.scalars(
            select(RemediationPlan).where(
                RemediationPlan.status != RemediationStatus.COMPLETED.value
            )
        )

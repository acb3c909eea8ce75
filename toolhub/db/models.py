"""
SQLAlchemy ORM models for the tool registry.
Packages own Tools (1:N, cascading). Collections and Agents carry an executor
configuration and are the owning entities consumed by the router and MCP gateway.
"""
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    String, Text, Integer, Float, Boolean, DateTime,
    ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from toolhub.db.base import Base, JSONType


class HealthStatus(str, Enum):
    HEALTHY = "HEALTHY"
    BROKEN = "BROKEN"
    UNKNOWN = "UNKNOWN"


class SchemaSource(str, Enum):
    EXTRACTED = "extracted"
    AUTHOR = "author"


class DiscoveryMethod(str, Enum):
    CHANGES_FEED = "changes-feed"
    KEYWORD_SEARCH = "keyword-search"
    MANUAL = "manual"


class PackageTier(str, Enum):
    MINIMAL = "minimal"
    RICH = "rich"


# ── Packages ───────────────────────────────────────────────────────────────────

class PackageModel(Base):
    """One row per npm package, upserted by name on every re-sync."""
    __tablename__ = "packages"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: f"pkg-{uuid.uuid4().hex[:8]}"
    )
    name: Mapped[str] = mapped_column(String(256), unique=True, nullable=False)
    version: Mapped[str] = mapped_column(String(64), nullable=False)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    keywords: Mapped[list] = mapped_column(JSONType, default=list)
    repository: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    homepage: Mapped[str | None] = mapped_column(Text, nullable=True)
    license: Mapped[str | None] = mapped_column(String(128), nullable=True)
    discovery_method: Mapped[str] = mapped_column(String(32), default=DiscoveryMethod.MANUAL.value)
    is_official: Mapped[bool] = mapped_column(Boolean, default=False)
    # None means "never fetched", scored the same as zero
    downloads_last_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tier: Mapped[str] = mapped_column(String(16), default=PackageTier.MINIMAL.value)
    env: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tools: Mapped[list["ToolModel"]] = relationship(
        back_populates="package", cascade="all, delete-orphan", passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Package id={self.id} name={self.name!r} version={self.version}>"


# ── Tools ─────────────────────────────────────────────────────────────────────

class ToolModel(Base):
    """One row per exported callable within a package."""
    __tablename__ = "tools"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: f"tool-{uuid.uuid4().hex[:8]}"
    )
    package_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("packages.id", ondelete="CASCADE"), nullable=False
    )
    export_name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")

    input_schema: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    schema_source: Mapped[str | None] = mapped_column(String(16), nullable=True)
    schema_extracted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    parameters: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    returns: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    ai_agent: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False)

    import_health: Mapped[str] = mapped_column(String(16), default=HealthStatus.UNKNOWN.value)
    execution_health: Mapped[str] = mapped_column(String(16), default=HealthStatus.UNKNOWN.value)
    last_health_check: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    health_check_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    quality_score: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    package: Mapped["PackageModel"] = relationship(back_populates="tools", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("package_id", "export_name", name="uq_tools_package_export"),
        Index("ix_tools_health", "import_health", "execution_health"),
    )

    @property
    def is_broken(self) -> bool:
        return (
            self.import_health == HealthStatus.BROKEN.value
            or self.execution_health == HealthStatus.BROKEN.value
        )

    def __repr__(self) -> str:
        return f"<Tool id={self.id} export={self.export_name!r} package_id={self.package_id}>"


class HealthCheckModel(Base):
    """Append-only history of health checks, one row per tool per check."""
    __tablename__ = "health_checks"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: f"hc-{uuid.uuid4().hex[:8]}"
    )
    tool_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tools.id", ondelete="CASCADE"), nullable=False, index=True
    )
    check_type: Mapped[str] = mapped_column(String(16), default="FULL")
    trigger_source: Mapped[str] = mapped_column(String(32), default="manual")
    import_status: Mapped[str] = mapped_column(String(16))
    import_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    import_time_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    execution_status: Mapped[str] = mapped_column(String(16))
    execution_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    execution_time_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    test_parameters: Mapped[dict] = mapped_column(JSONType, default=dict)
    overall_status: Mapped[str] = mapped_column(String(16))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self) -> str:
        return f"<HealthCheck tool_id={self.tool_id} overall={self.overall_status}>"


# ── Collections & Agents (executor owners) ─────────────────────────────────────

class CollectionModel(Base):
    """A user-curated, optionally public, ordered set of tools."""
    __tablename__ = "collections"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: f"col-{uuid.uuid4().hex[:8]}"
    )
    username: Mapped[str] = mapped_column(String(128), nullable=False)
    slug: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    executor_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    executor_config: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tools: Mapped[list["CollectionToolModel"]] = relationship(
        back_populates="collection", cascade="all, delete-orphan",
        order_by="CollectionToolModel.position", lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("username", "slug", name="uq_collections_username_slug"),
    )

    def __repr__(self) -> str:
        return f"<Collection id={self.id} {self.username}/{self.slug}>"


class CollectionToolModel(Base):
    __tablename__ = "collection_tools"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: f"ct-{uuid.uuid4().hex[:8]}"
    )
    collection_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("collections.id", ondelete="CASCADE"), nullable=False
    )
    tool_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tools.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0)

    collection: Mapped["CollectionModel"] = relationship(back_populates="tools")
    tool: Mapped["ToolModel"] = relationship(lazy="selectin")

    __table_args__ = (
        UniqueConstraint("collection_id", "tool_id", name="uq_collection_tools"),
    )


class AgentModel(Base):
    """Agent executor override; takes precedence over the collection's executor."""
    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: f"agt-{uuid.uuid4().hex[:8]}"
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    executor_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    executor_config: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Agent id={self.id} name={self.name!r}>"

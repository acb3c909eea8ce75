"""
Package Sync — turns discovered npm metadata into Package and Tool rows.

For every tool export the schema is resolved in priority order:
  1. sandboxed extraction against the default executor (schema_source=extracted)
  2. author-declared parameters converted to JSON Schema (schema_source=author)
  3. nothing: the tool is kept with no schema and flagged needs_review

A failed extraction leaves an already stored schema in place, so an executor
outage during a re-sync never erases what an earlier sync extracted.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from toolhub.db.models import DiscoveryMethod, SchemaSource, ToolModel
from toolhub.db.package_repository import PackageRepository, ToolRepository
from toolhub.errors import ExecutorError, NotFoundError
from toolhub.registry.metadata import PackageMetadata, ToolDeclaration
from toolhub.schema.extraction import (
    ExtractionResult, SchemaExtractionService, json_schema_to_parameters, parameters_to_json_schema,
)

logger = logging.getLogger(__name__)


class ToolSyncOutcome(BaseModel):
    tool_id: str
    export_name: str
    created: bool
    schema_source: Optional[str] = None
    needs_review: bool = False
    extraction_error: Optional[str] = None


class SyncReport(BaseModel):
    package_id: str
    package_name: str
    version: str
    created: bool
    tier: str
    tools: List[ToolSyncOutcome] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def needs_review(self) -> List[str]:
        return [t.export_name for t in self.tools if t.needs_review]


class PackageSyncService:
    """
    Usage:
        service = PackageSyncService(SchemaExtractionService(client))
        report = await service.sync_package(session, metadata, DiscoveryMethod.KEYWORD_SEARCH)
    """

    def __init__(self, extractor: SchemaExtractionService):
        self._extractor = extractor

    async def sync_package(
        self,
        session: AsyncSession,
        metadata: PackageMetadata,
        discovery_method: DiscoveryMethod = DiscoveryMethod.MANUAL,
        now: Optional[datetime] = None,
    ) -> SyncReport:
        now = now or datetime.utcnow()
        packages = PackageRepository(session)
        tools = ToolRepository(session)

        package, created = await packages.upsert(
            metadata.name,
            version=metadata.version,
            published_at=metadata.published_at,
            description=metadata.description,
            keywords=metadata.keywords,
            repository=metadata.repository,
            homepage=metadata.homepage,
            license=metadata.license,
            discovery_method=discovery_method.value,
            is_official=metadata.is_official,
            downloads_last_month=metadata.downloads_last_month,
            tier=metadata.tier.value,
            env=metadata.env,
        )
        report = SyncReport(
            package_id=package.id, package_name=package.name, version=package.version,
            created=created, tier=package.tier,
        )

        declarations = metadata.tools or await self._discover_exports(metadata, report)
        for declaration in declarations:
            outcome = await self._sync_tool(tools, package.id, metadata, declaration, now)
            report.tools.append(outcome)

        logger.info(
            f"[SYNC] {metadata.name}@{metadata.version}: {len(report.tools)} tools, "
            f"{len(report.needs_review)} need review"
        )
        return report

    async def refresh_schema(
        self,
        session: AsyncSession,
        package_name: str,
        export_name: str,
        now: Optional[datetime] = None,
    ) -> Tuple[ToolModel, ExtractionResult]:
        """Re-run extraction for one registered tool; the stored schema changes only on success."""
        tool = await ToolRepository(session).get_by_ref(package_name, export_name)
        if tool is None:
            raise NotFoundError(f"Tool not found: {package_name}/{export_name}")
        package = await PackageRepository(session).get_by_name(package_name)

        result = await self._extractor.extract_schema(
            package.name, tool.export_name, package.version, package.env,
        )
        if result.success:
            tool.input_schema = result.input_schema
            tool.parameters = json_schema_to_parameters(result.input_schema)
            tool.schema_source = SchemaSource.EXTRACTED.value
            tool.schema_extracted_at = now or datetime.utcnow()
            tool.needs_review = False
            if not tool.description and result.description:
                tool.description = result.description
            await session.flush()
            logger.info(f"[SYNC] Re-extracted schema for {package_name}/{export_name}")
        return tool, result

    async def _discover_exports(self, metadata: PackageMetadata, report: SyncReport) -> List[ToolDeclaration]:
        """No declared tools: ask the sandbox which exports look like tools."""
        try:
            listing = await self._extractor.list_exports(metadata.name, metadata.version, metadata.env)
        except ExecutorError as e:
            report.errors.append(f"list-exports failed: {e.message}")
            logger.warning(f"[SYNC] Could not list exports for {metadata.name}: {e.message}")
            return []
        return [
            ToolDeclaration(name=entry["name"], description=entry.get("description") or "")
            for entry in listing.tools
            if entry.get("isValidTool") and entry.get("name")
        ]

    async def _sync_tool(
        self,
        tools: ToolRepository,
        package_id: str,
        metadata: PackageMetadata,
        declaration: ToolDeclaration,
        now: datetime,
    ) -> ToolSyncOutcome:
        fields: Dict[str, Any] = {
            "description": declaration.description,
            "returns": declaration.returns,
            "ai_agent": declaration.ai_agent.model_dump(by_alias=False) if declaration.ai_agent else None,
        }

        extraction = await self._extractor.extract_schema(
            metadata.name, declaration.name, metadata.version, metadata.env,
        )
        if extraction.success:
            fields.update(
                input_schema=extraction.input_schema,
                schema_source=SchemaSource.EXTRACTED.value,
                schema_extracted_at=now,
                parameters=json_schema_to_parameters(extraction.input_schema),
                needs_review=False,
            )
            if not fields["description"] and extraction.description:
                fields["description"] = extraction.description
        else:
            # A failed extraction never downgrades a previously extracted schema
            existing = await tools.get_by_export(package_id, declaration.name)
            kept_extracted = (
                existing is not None
                and existing.schema_source == SchemaSource.EXTRACTED.value
                and existing.input_schema is not None
            )
            if kept_extracted:
                logger.warning(
                    f"[SYNC] Extraction failed for {metadata.name}/{declaration.name}; "
                    f"keeping stored schema: {extraction.error}"
                )
            elif declaration.parameters:
                fields.update(
                    input_schema=parameters_to_json_schema(declaration.parameters),
                    schema_source=SchemaSource.AUTHOR.value,
                    schema_extracted_at=None,
                    parameters=[p.model_dump() for p in declaration.parameters],
                    needs_review=False,
                )
            elif existing is None or existing.input_schema is None:
                fields["needs_review"] = True
                logger.warning(
                    f"[SYNC] {metadata.name}/{declaration.name} has no schema; flagged for review"
                )

        row, created = await tools.upsert(package_id, declaration.name, **fields)
        return ToolSyncOutcome(
            tool_id=row.id,
            export_name=declaration.name,
            created=created,
            schema_source=row.schema_source,
            needs_review=row.needs_review,
            extraction_error=extraction.error,
        )

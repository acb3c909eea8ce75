"""
Package metadata as handed over by the npm discovery client.
The `tpmjs` field of a package.json declares the package's agent tools.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from toolhub.db.models import DiscoveryMethod, PackageTier
from toolhub.schema.extraction import ToolParameter


class AgentGuidance(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    use_case: str = Field(default="", alias="useCase")
    limitations: str = ""
    examples: List[str] = Field(default_factory=list)


class ToolDeclaration(BaseModel):
    """One tool export as declared by the package author."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="exportName")
    description: str = ""
    parameters: Optional[List[ToolParameter]] = None
    returns: Optional[Dict[str, Any]] = None
    ai_agent: Optional[AgentGuidance] = Field(default=None, alias="aiAgent")


class PackageMetadata(BaseModel):
    """The subset of npm registry metadata the registry persists."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    version: str
    description: str = ""
    published_at: Optional[datetime] = None
    keywords: List[str] = Field(default_factory=list)
    repository: Optional[Dict[str, Any]] = None
    homepage: Optional[str] = None
    license: Optional[str] = None
    is_official: bool = False
    downloads_last_month: Optional[int] = None
    env: Dict[str, Any] = Field(default_factory=dict, repr=False)
    tools: List[ToolDeclaration] = Field(default_factory=list)

    @property
    def tier(self) -> PackageTier:
        """`rich` when any tool carries structured parameters, returns, or agent guidance."""
        for tool in self.tools:
            if tool.parameters or tool.returns or tool.ai_agent:
                return PackageTier.RICH
        return PackageTier.MINIMAL


class SyncRequest(BaseModel):
    package: PackageMetadata
    discovery_method: DiscoveryMethod = DiscoveryMethod.MANUAL

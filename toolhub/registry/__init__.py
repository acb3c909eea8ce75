"""Package registration — upserts packages and tools from discovery metadata."""
from .metadata import PackageMetadata, ToolDeclaration, ToolParameter, AgentGuidance, SyncRequest
from .sync import PackageSyncService, SyncReport

__all__ = [
    "PackageMetadata", "ToolDeclaration", "ToolParameter", "AgentGuidance", "SyncRequest",
    "PackageSyncService", "SyncReport",
]

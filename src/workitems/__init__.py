"""Azure DevOps work item client.

Fetches work items from the Azure DevOps REST API under strict throughput
constraints:
- Configuration management with environment overrides (AZURE_DEVOPS_*)
- Rate-limited, chunked batch REST client with a stable error taxonomy
- WIQL query translation and record normalization
- Sync orchestration into a caller-supplied store

Python Version: 3.10+ required
"""

# Logging Configuration - configure before other imports
from .logging_config import StructuredFormatter, configure_logging

# Initialize structured logging on module import
configure_logging()

from .__version__ import __version__
from .config import AzureDevOpsConfig, get_config, reset_config
from .connectors.azure_devops import (
    AzureDevOpsClient,
    AzureDevOpsError,
    AzureDevOpsProvider,
    ErrorKind,
    NotFoundError,
    RateLimiter,
    ValidationError,
)
from .models import (
    BatchOptions,
    Comment,
    ErrorPolicy,
    OrderDirection,
    Query,
    QueryFilters,
    RateLimitStatus,
    WorkItemExpand,
    WorkRecord,
)
from .sync import SyncResult, WorkItemStore, WorkItemSync

# Submodule export for patch("workitems.metrics.requests_total") style mocking
from . import metrics

__all__ = [
    "__version__",
    # Configuration
    "AzureDevOpsConfig",
    "get_config",
    "reset_config",
    # Client and provider
    "AzureDevOpsClient",
    "AzureDevOpsProvider",
    "RateLimiter",
    # Errors
    "AzureDevOpsError",
    "ErrorKind",
    "NotFoundError",
    "ValidationError",
    # Models
    "BatchOptions",
    "Comment",
    "ErrorPolicy",
    "OrderDirection",
    "Query",
    "QueryFilters",
    "RateLimitStatus",
    "WorkItemExpand",
    "WorkRecord",
    # Sync
    "SyncResult",
    "WorkItemStore",
    "WorkItemSync",
    # Logging
    "configure_logging",
    "StructuredFormatter",
    "metrics",
]

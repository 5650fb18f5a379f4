"""Personal Access Token authentication and URL building.

Pure and synchronous: no I/O, no retry, no state beyond the credentials.
"""

import base64
import re
from urllib.parse import quote, urlencode

from ...config import DEFAULT_API_VERSION, DEFAULT_HOST, AzureDevOpsConfig
from ...models import ConnectionInfo
from .errors import ValidationError

__all__ = ["PatAuth", "USER_AGENT"]

USER_AGENT = "ado-workitems/1.2"

_PAT_FORMAT = re.compile(r"^[a-zA-Z0-9]+$")


class PatAuth:
    """Builds authenticated headers and versioned URLs for one project.

    Attributes:
        organization: Azure DevOps organization
        project: Project name (URL-encoded when building paths)
        api_version: Value appended as ``api-version`` to every URL
        base_url: Organization base URL without trailing slash

    Example:
        >>> auth = PatAuth("contoso", "Fabrikam Web", "x" * 52)
        >>> auth.build_url("/_apis/wit/workitems/1")
        'https://dev.azure.com/contoso/Fabrikam%20Web/_apis/wit/workitems/1?api-version=7.1-preview.3'
    """

    def __init__(
        self,
        organization: str,
        project: str,
        pat: str,
        api_version: str | None = None,
        base_url: str | None = None,
    ) -> None:
        """Validate credentials and store them.

        Raises:
            ValidationError: If organization, project or pat is blank.
        """
        self.validate_credentials(organization, project, pat)

        self.organization = organization.strip()
        self.project = project.strip()
        self._pat = pat.strip()
        self.api_version = api_version or DEFAULT_API_VERSION
        self.base_url = (
            base_url.rstrip("/")
            if base_url
            else f"https://{DEFAULT_HOST}/{self.organization}"
        )

    @classmethod
    def from_config(cls, config: AzureDevOpsConfig) -> "PatAuth":
        return cls(
            organization=config.organization,
            project=config.project,
            pat=config.pat.get_secret_value(),
            api_version=config.api_version,
            base_url=config.base_url,
        )

    @staticmethod
    def validate_credentials(organization: str, project: str, pat: str) -> None:
        if not (organization or "").strip():
            raise ValidationError("Organization is required")
        if not (project or "").strip():
            raise ValidationError("Project is required")
        if not (pat or "").strip():
            raise ValidationError("Personal Access Token is required")

    def auth_headers(self) -> dict[str, str]:
        """Basic auth header (empty user, PAT as password) plus JSON headers."""
        encoded = base64.b64encode(f":{self._pat}".encode()).decode()
        return {
            "Authorization": f"Basic {encoded}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    def build_url(
        self,
        api_path: str,
        query_params: dict[str, str] | None = None,
        project_scoped: bool = True,
    ) -> str:
        """Build a complete, versioned API URL.

        Parameters keep the order they were given in and ``api-version`` is
        always last, so identical inputs yield byte-identical URLs.

        Args:
            api_path: Path starting with ``/`` (e.g. ``/_apis/wit/wiql``)
            query_params: Extra query parameters; values are URL-encoded
            project_scoped: False for organization-level APIs (e.g. /_apis/projects)

        Returns:
            Absolute URL string
        """
        if not api_path.startswith("/"):
            api_path = f"/{api_path}"

        prefix = self.base_url
        if project_scoped:
            prefix = f"{prefix}/{quote(self.project, safe='')}"

        params = list((query_params or {}).items())
        params.append(("api-version", self.api_version))
        # "$" and "," stay literal so $expand and id lists read as the docs show them
        return f"{prefix}{api_path}?{urlencode(params, safe='$,', quote_via=quote)}"

    def connection_info(self) -> ConnectionInfo:
        return ConnectionInfo(
            organization=self.organization,
            project=self.project,
            base_url=self.base_url,
        )

    def is_valid_pat_format(self) -> bool:
        """Basic PAT shape check: at least 40 alphanumeric characters."""
        return len(self._pat) >= 40 and bool(_PAT_FORMAT.match(self._pat))

    def __repr__(self) -> str:
        return (
            f"PatAuth(organization={self.organization!r}, project={self.project!r}, "
            f"api_version={self.api_version!r})"
        )

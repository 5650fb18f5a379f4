"""Shared pytest fixtures for the Azure DevOps work item client tests.

Fixture Organization:
    - Config fixtures: AzureDevOpsConfig built from explicit values, never the environment
    - Transport fixtures: httpx.Response builders and patched clients
    - Sample data fixtures: Wire payloads shaped like real API responses

References:
    - pytest fixtures docs: https://docs.pytest.org/en/stable/how-to/fixtures.html
    - httpx testing: https://www.python-httpx.org/advanced/transports/
"""

import logging
from typing import Any

import httpx
import pytest

from workitems.config import AzureDevOpsConfig, reset_config
from workitems.connectors.azure_devops.client import AzureDevOpsClient
from workitems.connectors.azure_devops.resilience import RetryPolicy

TEST_PAT = "a" * 52


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test to allow caplog to work.

    configure_logging() runs in workitems/__init__.py and turns propagation
    off, which hides records from pytest's caplog handler on the root logger.
    """
    for name in list(logging.Logger.manager.loggerDict.keys()):
        if name.startswith("ado_workitems"):
            child_logger = logging.getLogger(name)
            child_logger.handlers.clear()
            child_logger.propagate = True

    yield

    for name in list(logging.Logger.manager.loggerDict.keys()):
        if name.startswith("ado_workitems"):
            child_logger = logging.getLogger(name)
            child_logger.handlers.clear()
            child_logger.propagate = True


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep a developer's AZURE_DEVOPS_* env and .env file out of the tests."""
    import os

    for key in list(os.environ):
        if key.startswith("AZURE_DEVOPS_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


# =============================================================================
# Config Fixtures
# =============================================================================


def make_config(**overrides: Any) -> AzureDevOpsConfig:
    """AzureDevOpsConfig with test credentials and fast pacing."""
    values = {
        "organization": "contoso",
        "project": "Fabrikam",
        "pat": TEST_PAT,
        "requests_per_second": 1000.0,
        "retry_base_delay": 0.0,
        "retry_max_delay": 0.0,
    }
    values.update(overrides)
    return AzureDevOpsConfig(**values)


@pytest.fixture
def config() -> AzureDevOpsConfig:
    return make_config()


# =============================================================================
# Transport Fixtures
# =============================================================================


def make_response(
    status_code: int = 200,
    json_data: Any = None,
    headers: dict[str, str] | None = None,
    method: str = "GET",
    url: str = "https://dev.azure.com/contoso/Fabrikam/_apis/wit/workitems",
    text: str | None = None,
) -> httpx.Response:
    """Real httpx.Response with a request attached."""
    request = httpx.Request(method, url)
    if text is not None:
        return httpx.Response(status_code, text=text, headers=headers, request=request)
    if json_data is None:
        return httpx.Response(status_code, headers=headers, request=request)
    return httpx.Response(status_code, json=json_data, headers=headers, request=request)


def no_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=1, base_delay=0, max_delay=0, jitter=0)


@pytest.fixture
def ado_client(config):
    """AzureDevOpsClient with retries disabled (tests patch client.client.request)."""
    return AzureDevOpsClient(config, retry_policy=no_retry())


# =============================================================================
# Sample Data Fixtures
# =============================================================================


def wire_work_item(work_item_id: int, **field_overrides: Any) -> dict[str, Any]:
    """Work item payload as returned by GET /_apis/wit/workitems."""
    fields = {
        "System.Id": work_item_id,
        "System.Title": f"Work item {work_item_id}",
        "System.State": "Active",
        "System.WorkItemType": "Bug",
        "System.AssignedTo": {
            "displayName": "Jamie Rivera",
            "uniqueName": "jamie@contoso.com",
            "id": "0f1c-44aa",
        },
        "System.CreatedDate": "2026-03-01T09:00:00Z",
        "System.ChangedDate": "2026-03-02T10:30:00Z",
        "System.Tags": "backend; api",
    }
    fields.update(field_overrides)
    return {
        "id": work_item_id,
        "rev": 3,
        "url": f"https://dev.azure.com/contoso/_apis/wit/workItems/{work_item_id}",
        "fields": fields,
        "_links": {"self": {"href": f"https://dev.azure.com/contoso/_apis/wit/workItems/{work_item_id}"}},
    }


def wire_comment(comment_id: int, work_item_id: int, text: str = "Looks good") -> dict[str, Any]:
    """Comment payload as returned by the comments endpoint."""
    return {
        "id": comment_id,
        "workItemId": work_item_id,
        "version": 1,
        "text": text,
        "createdBy": {"displayName": "Sam Okafor", "uniqueName": "sam@contoso.com"},
        "createdDate": "2026-03-03T12:00:00Z",
        "modifiedDate": "2026-03-03T12:05:00Z",
    }


@pytest.fixture
def sample_work_item() -> dict[str, Any]:
    return wire_work_item(123)

"""
REST API client for Compute Engine (v1 API).
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Dict, List, Optional

import google.auth
import requests
from google.auth.exceptions import DefaultCredentialsError
from google.auth.transport.requests import AuthorizedSession

from compute_api import ComputeAPI
from errors import APIError, NotFoundError, RolloutCancelledError
from models import (
    BackendRef,
    FixedOrPercent,
    FleetSnapshot,
    FleetVersion,
    HealthRecord,
    Location,
    ManagedInstance,
    TemplateRef,
    UpdatePolicy,
)

logger = logging.getLogger(__name__)

API_BASE = "https://compute.googleapis.com/compute/v1"


def _resource_path(url: str) -> str:
    """Strip scheme, host and API version so self links compare equal."""
    idx = url.find("projects/")
    return url[idx:] if idx >= 0 else url


def _short_name(url: str) -> str:
    return url.rstrip("/").split("/")[-1]


@contextmanager
def _malformed_response(operation: str):
    """Re-raise missing or mistyped response fields as APIError."""
    try:
        yield
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise APIError(operation, f"malformed response: {e!r}") from e


def _error_message(resp) -> str:
    try:
        return resp.json().get("error", {}).get("message", "") or resp.text[:200]
    except (AttributeError, ValueError):
        return resp.text[:200]


class ComputeRestClient(ComputeAPI):
    """REST client for the Compute Engine v1 API."""

    RETRYABLE_STATUS_CODES = {409, 429, 500, 502, 503, 504}

    def __init__(
        self,
        project_id: str,
        timeout_s: int = 60,
        max_retries: int = 5,
        base_delay: float = 5.0,
    ):
        """
        Initialize the Compute REST client.

        Args:
            project_id: GCP project ID
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff

        Raises:
            APIError: If application default credentials cannot be found
        """
        self.project_id = project_id
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay

        try:
            creds, _ = google.auth.default(
                scopes=["https://www.googleapis.com/auth/cloud-platform"]
            )
        except DefaultCredentialsError as e:
            raise APIError("initialize client", str(e)) from e
        self.session = AuthorizedSession(creds)

    def _url(self, path: str) -> str:
        """Construct full API URL from path."""
        return f"{API_BASE}/{path.lstrip('/')}"

    def _group_path(self, project_id: str, location: Location, name: str) -> str:
        return f"projects/{project_id}/{location.scope_path()}/instanceGroupManagers/{name}"

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RolloutCancelledError("rollout cancelled")

    def _sleep(self, delay: float, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is None:
            time.sleep(delay)
            return
        if cancel_event.wait(delay):
            raise RolloutCancelledError("rollout cancelled during retry backoff")

    def _request_with_retry(
        self,
        method: str,
        url: str,
        operation: str,
        cancel_event: Optional[threading.Event] = None,
        max_retries: Optional[int] = None,
        **kwargs,
    ):
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        These retries are transport plumbing for reads: they cover throttling
        and provider hiccups on idempotent lookups. Mutations pass
        max_retries=0 so a failed patch surfaces on the first error and the
        rollout aborts.

        Args:
            method: HTTP method (GET, POST, PATCH)
            url: Request URL
            operation: Operation name used in error messages
            cancel_event: Run cancel token, checked before every attempt
            max_retries: Override of the client's retry count for this request
            **kwargs: Additional request parameters

        Returns:
            Successful response object

        Raises:
            NotFoundError: On HTTP 404
            APIError: On any other failure, or when retries are exhausted
            RolloutCancelledError: If the cancel event is set
        """
        retries = self.max_retries if max_retries is None else max_retries

        for attempt in range(retries + 1):
            self._check_cancelled(cancel_event)
            try:
                if method.upper() == "GET":
                    resp = self.session.get(url, timeout=self.timeout_s, **kwargs)
                elif method.upper() == "POST":
                    resp = self.session.post(url, timeout=self.timeout_s, **kwargs)
                elif method.upper() == "PATCH":
                    resp = self.session.patch(url, timeout=self.timeout_s, **kwargs)
                else:
                    raise ValueError(f"Unsupported method: {method}")
            except requests.exceptions.RequestException as e:
                if attempt >= retries:
                    raise APIError(
                        operation, f"Max retries exceeded. Last error: {e}"
                    ) from e
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"{operation}: request error: {e}, attempt {attempt + 1}/{retries + 1}, waiting {delay:.1f}s..."
                )
                self._sleep(delay, cancel_event)
                continue

            if resp.status_code in self.RETRYABLE_STATUS_CODES:
                error_info = _error_message(resp)
                if attempt >= retries:
                    raise APIError(operation, error_info, resp.status_code)
                delay = self._calculate_delay(attempt, resp)
                logger.warning(
                    f"{operation}: retryable error {resp.status_code} ({error_info}), attempt {attempt + 1}/{retries + 1}, waiting {delay:.1f}s..."
                )
                self._sleep(delay, cancel_event)
                continue

            if resp.status_code == 404:
                raise NotFoundError(operation, _error_message(resp))
            if resp.status_code not in (200, 201, 202):
                raise APIError(operation, _error_message(resp), resp.status_code)

            return resp

    def _request_json(
        self,
        method: str,
        url: str,
        operation: str,
        cancel_event: Optional[threading.Event] = None,
        **kwargs,
    ) -> Dict:
        """Execute a request and decode its JSON object body."""
        resp = self._request_with_retry(method, url, operation, cancel_event, **kwargs)
        try:
            data = resp.json()
        except ValueError as e:
            raise APIError(operation, f"response is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise APIError(operation, f"unexpected response: {data!r:.200}")
        return data

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        # Another operation on the same group is still running
        base = self.base_delay
        if resp is not None and resp.status_code == 409:
            base = 15.0

        delay = base * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 180.0)

    def get_group(
        self,
        project_id: str,
        location: Location,
        name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> FleetSnapshot:
        """
        Get the current state of a managed instance group.

        Args:
            project_id: GCP project ID
            location: Region or zone of the group
            name: Instance group manager name
            cancel_event: Run cancel token

        Returns:
            FleetSnapshot of the group
        """
        url = self._url(self._group_path(project_id, location, name))
        operation = f"get instance group {name}"
        data = self._request_json("GET", url, operation, cancel_event)
        with _malformed_response(operation):
            return self._parse_group(data)

    def list_group_instances(
        self,
        project_id: str,
        location: Location,
        name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ManagedInstance]:
        """
        List all managed instances of a group, following every result page.

        Args:
            project_id: GCP project ID
            location: Region or zone of the group
            name: Instance group manager name
            cancel_event: Run cancel token

        Returns:
            List of ManagedInstance objects
        """
        url = self._url(
            f"{self._group_path(project_id, location, name)}/listManagedInstances"
        )

        instances: List[ManagedInstance] = []
        page_token: Optional[str] = None

        while True:
            params = {}
            if page_token:
                params["pageToken"] = page_token

            operation = f"list managed instances of {name}"
            data = self._request_json(
                "POST", url, operation, cancel_event, params=params
            )

            with _malformed_response(operation):
                for item in data.get("managedInstances", []):
                    instances.append(
                        ManagedInstance(
                            instance=_resource_path(item["instance"]),
                            template=_resource_path(
                                item.get("version", {}).get("instanceTemplate", "")
                            ),
                        )
                    )
                page_token = data.get("nextPageToken")
            if not page_token:
                break

        return instances

    def patch_group(
        self,
        project_id: str,
        location: Location,
        name: str,
        versions: List[FleetVersion],
        update_policy: UpdatePolicy,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """
        Patch the versions and update policy of a managed instance group.

        Args:
            project_id: GCP project ID
            location: Region or zone of the group
            name: Instance group manager name
            versions: Desired versions, replacing the current ones
            update_policy: Rolling update policy to apply
            cancel_event: Run cancel token
        """
        url = self._url(self._group_path(project_id, location, name))
        body = {
            "versions": [self._version_body(v) for v in versions],
            "updatePolicy": {
                "type": update_policy.type,
                "maxSurge": {"fixed": update_policy.max_surge},
                "maxUnavailable": {"fixed": update_policy.max_unavailable},
            },
        }
        data = self._request_json(
            "PATCH",
            url,
            f"patch instance group {name}",
            cancel_event,
            max_retries=0,
            json=body,
        )
        logger.debug(f"Patch accepted for {name} (op={data.get('name', '?')})")

    def get_template(
        self,
        project_id: str,
        name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> TemplateRef:
        """
        Resolve a global instance template.

        Args:
            project_id: GCP project ID
            name: Instance template name
            cancel_event: Run cancel token

        Returns:
            TemplateRef holding the template's self link
        """
        url = self._url(f"projects/{project_id}/global/instanceTemplates/{name}")
        operation = f"get instance template {name}"
        data = self._request_json("GET", url, operation, cancel_event)
        with _malformed_response(operation):
            return TemplateRef(
                name=data.get("name", name), self_link=_resource_path(data["selfLink"])
            )

    def find_backend_for_group(
        self,
        project_id: str,
        group: FleetSnapshot,
        cancel_event: Optional[threading.Event] = None,
    ) -> BackendRef:
        """
        Search every backend service in the project for one serving the group.

        Args:
            project_id: GCP project ID
            group: Snapshot of the instance group
            cancel_event: Run cancel token

        Returns:
            BackendRef of the matching backend service

        Raises:
            NotFoundError: If no backend service references the group
        """
        url = self._url(f"projects/{project_id}/aggregated/backendServices")
        wanted = _resource_path(group.instance_group)
        page_token: Optional[str] = None

        while True:
            params = {}
            if page_token:
                params["pageToken"] = page_token

            operation = "list backend services"
            data = self._request_json(
                "GET", url, operation, cancel_event, params=params
            )

            with _malformed_response(operation):
                for scoped in data.get("items", {}).values():
                    for service in scoped.get("backendServices", []):
                        for backend in service.get("backends", []):
                            if _resource_path(backend.get("group", "")) == wanted:
                                region = service.get("region")
                                return BackendRef(
                                    name=service["name"],
                                    self_link=service.get("selfLink", ""),
                                    region=_short_name(region) if region else None,
                                )
                page_token = data.get("nextPageToken")
            if not page_token:
                break

        raise NotFoundError(
            "find backend service",
            f"could not find backend service containing instance group {group.name}",
        )

    def get_backend_health(
        self,
        project_id: str,
        backend: BackendRef,
        group: FleetSnapshot,
        cancel_event: Optional[threading.Event] = None,
    ) -> HealthRecord:
        """
        Get the health of the group's instances as seen by a backend service.

        Args:
            project_id: GCP project ID
            backend: Backend service fronting the group
            group: Snapshot of the instance group
            cancel_event: Run cancel token

        Returns:
            Mapping of instance URL to True when the instance is UNHEALTHY
        """
        if backend.is_regional:
            path = f"projects/{project_id}/regions/{backend.region}/backendServices/{backend.name}/getHealth"
        else:
            path = f"projects/{project_id}/global/backendServices/{backend.name}/getHealth"

        operation = f"get health of backend service {backend.name}"
        data = self._request_json(
            "POST",
            self._url(path),
            operation,
            cancel_event,
            json={"group": group.instance_group},
        )

        health: Dict[str, bool] = {}
        with _malformed_response(operation):
            for status in data.get("healthStatus", []):
                instance = status.get("instance")
                if instance:
                    health[_resource_path(instance)] = (
                        status.get("healthState") == "UNHEALTHY"
                    )
        return health

    @staticmethod
    def _parse_group(data: Dict) -> FleetSnapshot:
        versions = []
        for v in data.get("versions", []):
            size = v.get("targetSize")
            versions.append(
                FleetVersion(
                    name=v.get("name", ""),
                    template=_resource_path(v.get("instanceTemplate", "")),
                    target_size=(
                        FixedOrPercent(
                            fixed=int(size["fixed"]) if "fixed" in size else None,
                            percent=int(size["percent"]) if "percent" in size else None,
                        )
                        if size
                        else None
                    ),
                )
            )

        zones = tuple(
            _short_name(z["zone"])
            for z in data.get("distributionPolicy", {}).get("zones", [])
            if z.get("zone")
        )
        status = data.get("status", {})

        return FleetSnapshot(
            name=data.get("name", ""),
            self_link=data.get("selfLink", ""),
            instance_group=data.get("instanceGroup", ""),
            versions=tuple(versions),
            target_size=int(data.get("targetSize", 0)),
            zones=zones,
            is_stable=bool(status.get("isStable", False)),
            version_target_reached=bool(
                status.get("versionTarget", {}).get("isReached", False)
            ),
        )

    @staticmethod
    def _version_body(version: FleetVersion) -> Dict:
        body: Dict = {"instanceTemplate": version.template}
        if version.name:
            body["name"] = version.name
        if version.target_size is not None:
            if version.target_size.fixed is not None:
                body["targetSize"] = {"fixed": version.target_size.fixed}
            elif version.target_size.percent is not None:
                body["targetSize"] = {"percent": version.target_size.percent}
        return body

"""
Schema Registry client facade.

Typed async wrapper over the registry REST API. Every non-success response is
translated into the operator exception taxonomy here, so the reconcilers only
ever see RegisteredSchema values or sroperator.exceptions errors. There are no
retries in this layer; retry policy belongs to the reconcilers' requeue
decisions.
"""

from typing import Any, List, Optional
from urllib.parse import quote

import httpx

from sroperator.core import get_logger
from sroperator.exceptions import (
    IncompatibleSchemaError,
    InvalidSchemaOrTypeError,
    RegistryNotFoundError,
    RegistryTransientError,
    SchemaVersionSoftDeletedError,
)
from sroperator.services.observability.prometheus import get_registry
from .models import (
    CONTENT_TYPE,
    NOT_FOUND_CODES,
    SCHEMA_VERSION_SOFT_DELETED,
    RegisteredSchema,
    RegistryError,
)

logger = get_logger(__name__)


class SchemaRegistryClient:
    """
    Client for one schema registry endpoint.

    Example:
        async with SchemaRegistryClient("http://registry:8082") as client:
            schema_id = await client.register("orders-value", content, "AVRO")
            latest = await client.fetch_latest("orders-value")
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Accept": CONTENT_TYPE,
                "Content-Type": CONTENT_TYPE,
                "User-Agent": "schema-registry-operator/0.1",
            },
        )

    async def __aenter__(self) -> "SchemaRegistryClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ============================================
    # Operations
    # ============================================

    async def register(
        self,
        subject: str,
        content: str,
        schema_type: str = "AVRO",
        normalize: bool = False,
    ) -> int:
        """
        Register content under subject.

        Returns:
            The registry-wide schema id.

        Raises:
            InvalidSchemaOrTypeError: HTTP 422
            IncompatibleSchemaError: HTTP 409
            RegistryTransientError: anything else that is not 2xx
        """
        body = {"schema": content, "schemaType": schema_type}
        response = await self._request(
            "register",
            "POST",
            f"/subjects/{self._quote(subject)}/versions",
            subject=subject,
            params={"normalize": self._bool(normalize)},
            json=body,
        )
        return int(self._json(response, "register").get("id") or 0)

    async def fetch_latest(self, subject: str) -> RegisteredSchema:
        """
        Fetch the latest registered version of subject.

        Raises:
            RegistryNotFoundError: subject unknown
            RegistryTransientError: network / unexpected response
        """
        response = await self._request(
            "fetch_latest",
            "GET",
            f"/subjects/{self._quote(subject)}/versions/latest",
            subject=subject,
        )
        data = self._json(response, "fetch_latest")
        data.setdefault("subject", subject)
        return RegisteredSchema.from_dict(data)

    async def get_compatibility(self, subject: str) -> Optional[str]:
        """
        Compatibility level configured for subject, None when it has none.
        """
        try:
            response = await self._request(
                "get_compatibility",
                "GET",
                f"/config/{self._quote(subject)}",
                subject=subject,
            )
        except RegistryNotFoundError:
            return None
        data = self._json(response, "get_compatibility")
        return data.get("compatibilityLevel") or data.get("compatibility")

    async def set_compatibility(self, subject: str, level: str) -> str:
        """Set the compatibility level of subject"""
        response = await self._request(
            "set_compatibility",
            "PUT",
            f"/config/{self._quote(subject)}",
            subject=subject,
            json={"compatibility": level},
        )
        return self._json(response, "set_compatibility").get("compatibility", level)

    async def delete_subject(self, subject: str, permanent: bool = False) -> List[int]:
        """
        Delete every version of subject.

        Returns:
            Versions removed by the registry.

        Raises:
            RegistryNotFoundError: subject unknown (or already soft deleted)
            RegistryTransientError: network / unexpected response
        """
        response = await self._request(
            "delete_subject",
            "DELETE",
            f"/subjects/{self._quote(subject)}",
            subject=subject,
            params={"permanent": self._bool(permanent)},
        )
        data = self._json(response, "delete_subject")
        return [int(v) for v in data] if isinstance(data, list) else []

    async def delete_version(self, subject: str, version: int, permanent: bool = False) -> int:
        """
        Delete one version of subject.

        Raises:
            RegistryNotFoundError: subject/version unknown or invalid
            SchemaVersionSoftDeletedError: soft delete of an already soft deleted version
            RegistryTransientError: network / unexpected response
        """
        response = await self._request(
            "delete_version",
            "DELETE",
            f"/subjects/{self._quote(subject)}/versions/{int(version)}",
            subject=subject,
            version=version,
            params={"permanent": self._bool(permanent)},
        )
        data = self._json(response, "delete_version")
        return int(data) if isinstance(data, (int, str)) and str(data).isdigit() else int(version)

    # ============================================
    # Wire helpers
    # ============================================

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        subject: str,
        version: Optional[int] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        metrics = get_registry()
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            metrics.inc("registry_requests_total", labels={"operation": operation, "outcome": "transport_error"})
            logger.warning(
                "Registry request failed",
                operation=operation,
                subject=subject,
                error=str(e),
            )
            raise RegistryTransientError(operation, str(e) or type(e).__name__, cause=e) from e

        outcome = "success" if response.is_success else str(response.status_code)
        metrics.inc("registry_requests_total", labels={"operation": operation, "outcome": outcome})

        if not response.is_success:
            self._raise_for_response(operation, response, subject, version)
        return response

    def _raise_for_response(
        self,
        operation: str,
        response: httpx.Response,
        subject: str,
        version: Optional[int],
    ) -> None:
        """Map a non-2xx registry response onto the exception taxonomy"""
        try:
            error = RegistryError.from_dict(response.json())
        except ValueError:
            error = RegistryError(message=response.text)

        status = response.status_code
        message = error.message or response.reason_phrase

        if operation == "register":
            if status == 422:
                raise InvalidSchemaOrTypeError(message, subject=subject)
            if status == 409:
                raise IncompatibleSchemaError(message, subject=subject)

        if status == 404:
            if error.error_code == SCHEMA_VERSION_SOFT_DELETED and version is not None:
                raise SchemaVersionSoftDeletedError(subject, version, registry_message=message)
            if error.error_code is None or error.error_code in NOT_FOUND_CODES:
                raise RegistryNotFoundError(
                    subject,
                    version=version,
                    registry_error_code=error.error_code,
                    registry_message=message,
                )

        # An invalid version on delete means there is nothing left to delete
        if status == 422 and operation == "delete_version":
            raise RegistryNotFoundError(
                subject,
                version=version,
                registry_error_code=error.error_code,
                registry_message=message,
            )

        raise RegistryTransientError(
            operation,
            f"HTTP {status}: {message}",
            status_code=status,
            registry_error_code=error.error_code,
        )

    @staticmethod
    def _json(response: httpx.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RegistryTransientError(operation, "invalid JSON in registry response", cause=e) from e

    @staticmethod
    def _quote(subject: str) -> str:
        return quote(subject, safe="")

    @staticmethod
    def _bool(value: bool) -> str:
        return "true" if value else "false"

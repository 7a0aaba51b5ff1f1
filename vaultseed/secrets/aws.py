"""
AWS Secrets Manager store.

Secrets are written with put_secret_value, falling back to create_secret the
first time a name is seen. A secret still scheduled for deletion is restored
before it is written again. The caller is whoever the boto3 credentials
belong to; access and network rules are enforced by AWS and translated into
vaultseed errors here.

boto3 is synchronous, so every call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import structlog
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from pydantic import SecretStr

from vaultseed.core.exceptions import (
    AccessDenied,
    NetworkUnreachable,
    SecretNotFound,
    SecretStoreError,
    StoreUnavailable,
)
from vaultseed.models.schemas import SecretReference
from vaultseed.secrets.store import CallerContext

logger = structlog.get_logger(__name__)

_ACCESS_DENIED_CODES = {"AccessDeniedException", "AccessDenied", "UnrecognizedClientException"}
_NOT_FOUND_CODES = {"ResourceNotFoundException"}
_UNAVAILABLE_CODES = {
    "ThrottlingException",
    "Throttling",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "InternalServiceError",
    "InternalFailure",
    "ServiceUnavailable",
}
_NETWORK_ERRORS = (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)


class SecretsManagerStore:
    """
    Secret store backed by AWS Secrets Manager.

    Usage:
        client = boto3.Session(region_name="ap-northeast-1").client("secretsmanager")
        store = SecretsManagerStore(client, name="vaultseed", prefix="vaultseed/")
        ref = await store.put("db-pass", value, caller)
    """

    def __init__(self, client: Any, name: str = "vaultseed", prefix: str = "") -> None:
        self._client = client
        self.name = name
        self.prefix = prefix

    def secret_id(self, name: str) -> str:
        return f"{self.prefix}{name}"

    async def put(
        self, name: str, value: SecretStr, caller: CallerContext
    ) -> SecretReference:
        response = await asyncio.to_thread(self._put_sync, name, value)
        logger.info(
            "secret_stored",
            store=self.name,
            secret=name,
            version=response["VersionId"],
        )
        return SecretReference(
            name=name,
            location_uri=response["ARN"],
            version=response["VersionId"],
        )

    async def reference(self, name: str) -> SecretReference:
        response = await asyncio.to_thread(self._describe_sync, name)
        current = next(
            (
                version_id
                for version_id, stages in response.get("VersionIdsToStages", {}).items()
                if "AWSCURRENT" in stages
            ),
            None,
        )
        if current is None:
            raise SecretNotFound(self.name, f"Secret has no current version: {name}", {"secret": name})
        return SecretReference(name=name, location_uri=response["ARN"], version=current)

    async def exists(self, name: str) -> bool:
        try:
            response = await asyncio.to_thread(self._describe_sync, name)
        except SecretNotFound:
            return False
        # a secret pending deletion cannot be read or referenced
        return "DeletedDate" not in response

    async def resolve(
        self, reference: SecretReference, caller: CallerContext
    ) -> SecretStr:
        def _get() -> dict:
            try:
                return self._client.get_secret_value(
                    SecretId=reference.location_uri,
                    VersionId=reference.version,
                )
            except (ClientError, *_NETWORK_ERRORS) as e:
                raise self._translate(e, reference.name) from e

        response = await asyncio.to_thread(_get)
        return SecretStr(response["SecretString"])

    # -- internals --

    def _put_sync(self, name: str, value: SecretStr) -> dict:
        secret_id = self.secret_id(name)
        try:
            return self._put_value(secret_id, value)
        except ClientError as e:
            code = _error_code(e)
            if code == "InvalidRequestException" and self._restore_if_deleted(secret_id, name):
                return self._call(name, self._put_value, secret_id, value)
            if code not in _NOT_FOUND_CODES:
                raise self._translate(e, name) from e
        except _NETWORK_ERRORS as e:
            raise self._translate(e, name) from e

        logger.info("secret_creating", store=self.name, secret=name)
        try:
            return self._client.create_secret(
                Name=secret_id,
                SecretString=value.get_secret_value(),
                Tags=[{"Key": "managed-by", "Value": "vaultseed"}],
            )
        except ClientError as e:
            if _error_code(e) != "ResourceExistsException":
                raise self._translate(e, name) from e
        except _NETWORK_ERRORS as e:
            raise self._translate(e, name) from e

        # another writer created the secret between our two calls
        logger.info("secret_created_concurrently", store=self.name, secret=name)
        return self._call(name, self._put_value, secret_id, value)

    def _put_value(self, secret_id: str, value: SecretStr) -> dict:
        return self._client.put_secret_value(
            SecretId=secret_id,
            SecretString=value.get_secret_value(),
        )

    def _restore_if_deleted(self, secret_id: str, name: str) -> bool:
        """Restore a secret scheduled for deletion. False if it is not pending deletion."""
        response = self._call(name, self._client.describe_secret, SecretId=secret_id)
        if "DeletedDate" not in response:
            return False
        logger.info("secret_restoring", store=self.name, secret=name)
        self._call(name, self._client.restore_secret, SecretId=secret_id)
        return True

    def _describe_sync(self, name: str) -> dict:
        return self._call(name, self._client.describe_secret, SecretId=self.secret_id(name))

    def _call(self, name: str, method: Callable[..., dict], *args: Any, **kwargs: Any) -> dict:
        try:
            return method(*args, **kwargs)
        except (ClientError, *_NETWORK_ERRORS) as e:
            raise self._translate(e, name) from e

    def _translate(self, error: Exception, name: str) -> SecretStoreError:
        details = {"secret": name}
        if isinstance(error, ClientError):
            code = _error_code(error)
            message = error.response.get("Error", {}).get("Message", str(error))
            status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            details["code"] = code
            if code in _ACCESS_DENIED_CODES:
                return AccessDenied(self.name, message, details)
            if code in _NOT_FOUND_CODES:
                return SecretNotFound(self.name, f"Secret not found: {name}", details)
            if code in _UNAVAILABLE_CODES or status >= 500:
                return StoreUnavailable(self.name, message, details)
            return SecretStoreError(self.name, message, details)
        return NetworkUnreachable(self.name, f"Secrets Manager unreachable: {error}", details)


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")

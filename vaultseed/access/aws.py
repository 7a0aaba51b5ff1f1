"""
IAM access binder.

Grants are inline role policies allowing Secrets Manager actions on a secret
(or on every secret under the vault prefix). IAM is eventually consistent,
so propagation is confirmed with simulate_principal_policy instead of a
fixed sleep after put_role_policy.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from typing import Any, Literal

import structlog
from botocore.exceptions import ClientError

from vaultseed.access.binder import AccessBinder
from vaultseed.core.exceptions import (
    AccessBindingError,
    IdentityNotFound,
    ResourceNotFound,
)
from vaultseed.models.schemas import Binding, BindingState, Capability

logger = structlog.get_logger(__name__)

CAPABILITY_ACTIONS: dict[Capability, list[str]] = {
    Capability.READ: [
        "secretsmanager:GetSecretValue",
        "secretsmanager:DescribeSecret",
    ],
    Capability.WRITE: [
        "secretsmanager:GetSecretValue",
        "secretsmanager:DescribeSecret",
        "secretsmanager:PutSecretValue",
        "secretsmanager:CreateSecret",
        "secretsmanager:UpdateSecret",
    ],
    Capability.ADMIN: ["secretsmanager:*"],
}


def policy_name(resource_arn: str, capability: Capability) -> str:
    """Stable inline policy name, so re-granting overwrites instead of piling up."""
    digest = hashlib.sha256(resource_arn.encode()).hexdigest()[:12]
    return f"vaultseed-{capability.value}-{digest}"


def policy_document(resource_arn: str, capability: Capability) -> str:
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Action": CAPABILITY_ACTIONS[capability],
            "Resource": resource_arn,
        }],
    })


class IamAccessBinder(AccessBinder):
    """
    Access binder backed by IAM roles and Secrets Manager.

    Identities are IAM role names or role ARNs. Resources are secret ARNs,
    secret names, or the vault name (meaning every secret under the prefix).
    """

    def __init__(
        self,
        iam_client: Any,
        secrets_client: Any,
        vault_name: str,
        region: str,
        account_id: str,
        prefix: str = "",
        poll_backoff: Literal["fixed", "exponential"] = "exponential",
        max_poll_interval: float = 10.0,
    ) -> None:
        super().__init__(poll_backoff=poll_backoff, max_poll_interval=max_poll_interval)
        self._iam = iam_client
        self._secrets = secrets_client
        self.vault_name = vault_name
        self.region = region
        self.account_id = account_id
        self.prefix = prefix
        self._resolved: dict[tuple[str, str, Capability], tuple[str, str]] = {}

    async def grant(
        self, identity_id: str, resource_id: str, capability: Capability
    ) -> Binding:
        role_name, role_arn = await asyncio.to_thread(self._resolve_role, identity_id)
        resource_arn = await asyncio.to_thread(self._resolve_resource, resource_id)

        def _put() -> None:
            try:
                self._iam.put_role_policy(
                    RoleName=role_name,
                    PolicyName=policy_name(resource_arn, capability),
                    PolicyDocument=policy_document(resource_arn, capability),
                )
            except ClientError as e:
                raise AccessBindingError(
                    f"put_role_policy failed: {e.response.get('Error', {}).get('Code', e)}",
                    {"identity": identity_id, "resource": resource_id},
                ) from e

        await asyncio.to_thread(_put)
        self._resolved[(identity_id, resource_id, capability)] = (role_arn, resource_arn)

        binding = Binding(
            identity_id=identity_id,
            resource_id=resource_id,
            capability=capability,
        )
        logger.info("binding_granted", binding=binding.describe(), role=role_arn)
        return binding

    async def check(self, binding: Binding) -> BindingState:
        key = (binding.identity_id, binding.resource_id, binding.capability)
        if key not in self._resolved:
            return BindingState.PENDING
        role_arn, resource_arn = self._resolved[key]

        def _simulate() -> dict:
            return self._iam.simulate_principal_policy(
                PolicySourceArn=role_arn,
                ActionNames=CAPABILITY_ACTIONS[binding.capability],
                ResourceArns=[resource_arn],
            )

        try:
            response = await asyncio.to_thread(_simulate)
        except ClientError as e:
            # the role or policy may not be visible to the simulator yet
            logger.debug(
                "binding_simulation_error",
                binding=binding.describe(),
                code=e.response.get("Error", {}).get("Code"),
            )
            return BindingState.PENDING

        results = response.get("EvaluationResults", [])
        if results and all(r.get("EvalDecision") == "allowed" for r in results):
            return BindingState.ACTIVE
        return BindingState.PENDING

    # -- internals --

    def _resolve_role(self, identity_id: str) -> tuple[str, str]:
        role_name = identity_id.rsplit("/", 1)[-1]
        try:
            response = self._iam.get_role(RoleName=role_name)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "NoSuchEntity":
                raise IdentityNotFound(identity_id) from e
            raise
        return role_name, response["Role"]["Arn"]

    def _resolve_resource(self, resource_id: str) -> str:
        if resource_id == self.vault_name:
            return (
                f"arn:aws:secretsmanager:{self.region}:{self.account_id}"
                f":secret:{self.prefix}*"
            )
        try:
            response = self._secrets.describe_secret(SecretId=resource_id)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
                raise ResourceNotFound(resource_id) from e
            raise
        return response["ARN"]

"""
IAM roles for the CodeBuild projects, rendered from capability sets.

Fine-grained capabilities become one inline policy statement each, scoped to
the resources passed in; coarse capabilities become AWS managed policies.
"""

from dataclasses import dataclass, field
from typing import Dict, List

from aws_cdk import aws_iam as iam
from constructs import Construct

from cdk_logger import get_logger
from pipeline_definition import CAPABILITY_ACTIONS, Capability, RoleGrant

logger = get_logger("AccessRoles")

INLINE_POLICY_NAME = "Capabilities"


@dataclass
class PipelineRoleProps:
    grant: RoleGrant
    # capability -> resource ARNs its actions apply to, "*" when absent
    resources: Dict[Capability, List[str]] = field(default_factory=dict)


class PipelineRole(Construct):
    def __init__(self, scope: Construct, id: str, *, props: PipelineRoleProps) -> None:
        super().__init__(scope, id)
        self.grant = props.grant

        statements = []
        for capability in sorted(props.grant.capabilities, key=lambda c: c.value):
            if capability not in CAPABILITY_ACTIONS:
                continue
            statements.append(
                iam.PolicyStatement(
                    sid=_statement_id(capability),
                    effect=iam.Effect.ALLOW,
                    actions=sorted(CAPABILITY_ACTIONS[capability]),
                    resources=props.resources.get(capability, ["*"]),
                )
            )

        managed_policies = [
            iam.ManagedPolicy.from_aws_managed_policy_name(name)
            for name in props.grant.managed_policy_names()
        ]

        self.role = iam.Role(
            self,
            "Role",
            assumed_by=iam.ServicePrincipal(props.grant.principal),
            description=f"{props.grant.name} for the FastAPI Lambda pipeline",
            managed_policies=managed_policies or None,
            inline_policies=(
                {INLINE_POLICY_NAME: iam.PolicyDocument(statements=statements)}
                if statements
                else None
            ),
        )

        logger.info(
            f"Created role {props.grant.name} with capabilities: "
            f"{', '.join(sorted(c.value for c in props.grant.capabilities))}"
        )
        logger.debug(f"{props.grant.name} managed policies: {props.grant.managed_policy_names()}")


def _statement_id(capability: Capability) -> str:
    return "".join(part.capitalize() for part in capability.value.split("-"))

"""
Topology and parameterization model of the deployment pipeline.

The model is plain data: runtime variables, artifact handles, stages with
their actions, and the roles those actions run under. ``build_pipeline_definition``
produces the Source -> Build -> Deploy pipeline from settings; the stack
renders that value into CDK constructs only after ``validate`` has passed.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

from cdk_logger import get_logger
from config import PipelineSettings
from constants import CodeBuild, IAM, Pipeline, Variables

logger = get_logger("PipelineDefinition")


class PipelineDefinitionError(ValueError):
    """Base class for an invalid pipeline declaration."""


class ArtifactChainError(PipelineDefinitionError):
    """An artifact is consumed before it is produced, produced twice, or never used."""


class UnknownVariableError(PipelineDefinitionError):
    """A binding or run override names a variable the pipeline does not declare."""


class DuplicateNameError(PipelineDefinitionError):
    """Two stages, actions, variables or roles share a name."""


class UnknownRoleError(PipelineDefinitionError):
    """An action runs under a role the pipeline does not declare."""


class ActionKind(str, Enum):
    SOURCE = "source"
    BUILD = "build"


class Capability(str, Enum):
    """What a role may do, independent of how IAM spells it."""

    REGISTRY_AUTH = "registry-auth"
    REGISTRY_PULL = "registry-pull"
    REGISTRY_PUSH = "registry-push"
    FUNCTION_UPDATE_CODE = "function-update-code"
    FUNCTION_READ = "function-read"
    IMAGE_PULL_FOR_FUNCTION = "image-pull-for-function"
    # Coarse grants carried by the AWS managed policies
    REGISTRY_POWER_USER = "registry-power-user"
    FUNCTION_FULL_ACCESS = "function-full-access"


REGISTRY_CAPABILITIES: FrozenSet[Capability] = frozenset(
    {
        Capability.REGISTRY_AUTH,
        Capability.REGISTRY_PULL,
        Capability.REGISTRY_PUSH,
        Capability.REGISTRY_POWER_USER,
    }
)
FUNCTION_CAPABILITIES: FrozenSet[Capability] = frozenset(
    {
        Capability.FUNCTION_UPDATE_CODE,
        Capability.FUNCTION_READ,
        Capability.FUNCTION_FULL_ACCESS,
    }
)

CAPABILITY_ACTIONS: Dict[Capability, List[str]] = {
    Capability.REGISTRY_AUTH: IAM.REGISTRY_AUTH_ACTIONS,
    Capability.REGISTRY_PULL: IAM.REGISTRY_PULL_ACTIONS,
    Capability.REGISTRY_PUSH: IAM.REGISTRY_PUSH_ACTIONS,
    Capability.FUNCTION_UPDATE_CODE: IAM.FUNCTION_UPDATE_CODE_ACTIONS,
    Capability.FUNCTION_READ: IAM.FUNCTION_READ_ACTIONS,
    Capability.IMAGE_PULL_FOR_FUNCTION: IAM.IMAGE_PULL_FOR_FUNCTION_ACTIONS,
}

MANAGED_POLICIES: Dict[Capability, str] = {
    Capability.REGISTRY_POWER_USER: IAM.ECR_POWER_USER_POLICY,
    Capability.FUNCTION_FULL_ACCESS: IAM.LAMBDA_FULL_ACCESS_POLICY,
}


@dataclass(frozen=True)
class RuntimeVariable:
    name: str
    default_value: str
    description: str = ""

    def reference(self) -> str:
        return Variables.reference(self.name)


@dataclass(frozen=True)
class ArtifactHandle:
    name: str


@dataclass(frozen=True)
class RoleGrant:
    name: str
    capabilities: FrozenSet[Capability]
    principal: str = IAM.CODEBUILD_PRINCIPAL

    def allows(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def iam_actions(self) -> List[str]:
        """Sorted, de-duplicated IAM actions behind the fine-grained capabilities."""
        actions = set()
        for capability in self.capabilities:
            actions.update(CAPABILITY_ACTIONS.get(capability, []))
        return sorted(actions)

    def managed_policy_names(self) -> List[str]:
        return sorted(
            MANAGED_POLICIES[c] for c in self.capabilities if c in MANAGED_POLICIES
        )


@dataclass(frozen=True)
class PipelineAction:
    name: str
    kind: ActionKind
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    # environment variable name -> pipeline variable name
    environment: Tuple[Tuple[str, str], ...] = ()
    role: Optional[str] = None
    project: Optional[str] = None


@dataclass(frozen=True)
class PipelineStage:
    name: str
    actions: Tuple[PipelineAction, ...]


@dataclass(frozen=True)
class PipelineDefinition:
    """Declared shape of the pipeline. Equal inputs give equal definitions."""

    name: str
    variables: Tuple[RuntimeVariable, ...]
    artifacts: Tuple[ArtifactHandle, ...]
    stages: Tuple[PipelineStage, ...]
    roles: Tuple[RoleGrant, ...] = field(default=())

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def stage(self, name: str) -> PipelineStage:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)

    def role(self, name: str) -> RoleGrant:
        for role in self.roles:
            if role.name == name:
                return role
        raise KeyError(name)

    def variable(self, name: str) -> RuntimeVariable:
        for variable in self.variables:
            if variable.name == name:
                return variable
        raise KeyError(name)

    def validate(self) -> "PipelineDefinition":
        """
        Check the declaration and return it unchanged.

        Raises a ``PipelineDefinitionError`` subclass on the first problem found.
        """
        if not self.stages:
            _fail(PipelineDefinitionError, "Pipeline declares no stages")

        _ensure_unique("stage", [s.name for s in self.stages])
        _ensure_unique("variable", [v.name for v in self.variables])
        _ensure_unique("artifact", [a.name for a in self.artifacts])
        _ensure_unique("role", [r.name for r in self.roles])
        _ensure_unique("action", [a.name for s in self.stages for a in s.actions])

        declared_artifacts = {a.name for a in self.artifacts}
        declared_variables = {v.name for v in self.variables}
        declared_roles = {r.name for r in self.roles}

        producers: Dict[str, str] = {}
        consumers: Dict[str, List[str]] = {name: [] for name in declared_artifacts}

        for stage in self.stages:
            if not stage.name.strip():
                _fail(PipelineDefinitionError, "Stage names must not be empty")
            if not stage.actions:
                _fail(PipelineDefinitionError, f"Stage '{stage.name}' has no actions")

            # Inputs may only come from stages that already ran
            available = set(producers)
            for action in stage.actions:
                if action.kind is not ActionKind.SOURCE and not action.inputs:
                    _fail(
                        ArtifactChainError,
                        f"Action '{action.name}' in stage '{stage.name}' consumes no artifact",
                    )
                for artifact in action.inputs:
                    if artifact not in declared_artifacts:
                        _fail(
                            ArtifactChainError,
                            f"Action '{action.name}' consumes undeclared artifact '{artifact}'",
                        )
                    if artifact not in available:
                        _fail(
                            ArtifactChainError,
                            f"Action '{action.name}' consumes '{artifact}' before any "
                            "earlier stage produces it",
                        )
                    consumers[artifact].append(action.name)

                for env_name, variable_name in action.environment:
                    if variable_name not in declared_variables:
                        _fail(
                            UnknownVariableError,
                            f"Action '{action.name}' binds {env_name} to undeclared "
                            f"variable '{variable_name}'",
                        )

                if action.role is not None and action.role not in declared_roles:
                    _fail(
                        UnknownRoleError,
                        f"Action '{action.name}' runs under undeclared role '{action.role}'",
                    )

            for action in stage.actions:
                for artifact in action.outputs:
                    if artifact not in declared_artifacts:
                        _fail(
                            ArtifactChainError,
                            f"Action '{action.name}' produces undeclared artifact '{artifact}'",
                        )
                    if artifact in producers:
                        _fail(
                            ArtifactChainError,
                            f"Artifact '{artifact}' is produced by both "
                            f"'{producers[artifact]}' and '{action.name}'",
                        )
                    producers[artifact] = action.name

        for artifact in sorted(declared_artifacts):
            if artifact not in producers:
                _fail(ArtifactChainError, f"Artifact '{artifact}' is never produced")
            if not consumers[artifact]:
                _fail(ArtifactChainError, f"Artifact '{artifact}' is never consumed")

        logger.debug(
            f"Pipeline '{self.name}' is valid: {' -> '.join(self.stage_names)}"
        )
        return self

    def resolve_variables(
        self, overrides: Optional[Mapping[str, str]] = None
    ) -> Dict[str, str]:
        """Values of every pipeline variable for one run."""
        overrides = dict(overrides or {})
        unknown = sorted(set(overrides) - {v.name for v in self.variables})
        if unknown:
            _fail(UnknownVariableError, f"Unknown pipeline variables: {', '.join(unknown)}")
        return {v.name: overrides.get(v.name, v.default_value) for v in self.variables}

    def resolve_environment(
        self, stage_name: str, overrides: Optional[Mapping[str, str]] = None
    ) -> Dict[str, str]:
        """Environment values the actions of ``stage_name`` see for one run."""
        values = self.resolve_variables(overrides)
        environment: Dict[str, str] = {}
        for action in self.stage(stage_name).actions:
            for env_name, variable_name in action.environment:
                environment[env_name] = values[variable_name]
        return environment


def _fail(error_class, message: str) -> None:
    logger.error(message)
    raise error_class(message)


def _ensure_unique(kind: str, names: List[str]) -> None:
    seen = set()
    for name in names:
        if name in seen:
            _fail(DuplicateNameError, f"Duplicate {kind} name '{name}'")
        seen.add(name)


def build_role_grants(settings: PipelineSettings) -> Tuple[RoleGrant, RoleGrant]:
    """Build and Deploy roles for the configured permission mode."""
    if settings.permissions.mode == "managed":
        build_capabilities = frozenset({Capability.REGISTRY_POWER_USER})
        deploy_capabilities = frozenset({Capability.FUNCTION_FULL_ACCESS})
    else:
        build_capabilities = frozenset(
            {
                Capability.REGISTRY_AUTH,
                Capability.REGISTRY_PULL,
                Capability.REGISTRY_PUSH,
            }
        )
        deploy_capabilities = frozenset(
            {
                Capability.FUNCTION_UPDATE_CODE,
                Capability.FUNCTION_READ,
                Capability.IMAGE_PULL_FOR_FUNCTION,
            }
        )
    return (
        RoleGrant(name=IAM.BUILD_ROLE_ID, capabilities=build_capabilities),
        RoleGrant(name=IAM.DEPLOY_ROLE_ID, capabilities=deploy_capabilities),
    )


def build_pipeline_definition(settings: PipelineSettings) -> PipelineDefinition:
    """The Source -> Build -> Deploy pipeline described by ``settings``, validated."""
    branch_variable = RuntimeVariable(
        name=Variables.BRANCH_NAME,
        default_value=settings.variables.branch_name_default,
        description=Variables.BRANCH_NAME_DESCRIPTION,
    )
    ecr_tag_variable = RuntimeVariable(
        name=Variables.ECR_TAG,
        default_value=settings.variables.ecr_tag_default,
        description=Variables.ECR_TAG_DESCRIPTION,
    )

    # Shared pipeline-wide, identical for Build and Deploy
    environment = (
        (Variables.BRANCH_NAME_ENV, branch_variable.name),
        (Variables.ECR_TAG_ENV, ecr_tag_variable.name),
    )

    build_role, deploy_role = build_role_grants(settings)

    definition = PipelineDefinition(
        name=settings.pipeline_name,
        variables=(branch_variable, ecr_tag_variable),
        artifacts=(
            ArtifactHandle(Pipeline.SOURCE_ARTIFACT),
            ArtifactHandle(Pipeline.BUILD_ARTIFACT),
        ),
        stages=(
            PipelineStage(
                name=Pipeline.SOURCE_STAGE,
                actions=(
                    PipelineAction(
                        name=Pipeline.SOURCE_ACTION,
                        kind=ActionKind.SOURCE,
                        outputs=(Pipeline.SOURCE_ARTIFACT,),
                    ),
                ),
            ),
            PipelineStage(
                name=Pipeline.BUILD_STAGE,
                actions=(
                    PipelineAction(
                        name=Pipeline.BUILD_ACTION,
                        kind=ActionKind.BUILD,
                        inputs=(Pipeline.SOURCE_ARTIFACT,),
                        outputs=(Pipeline.BUILD_ARTIFACT,),
                        environment=environment,
                        role=build_role.name,
                        project=CodeBuild.BUILD_PROJECT_ID,
                    ),
                ),
            ),
            PipelineStage(
                name=Pipeline.DEPLOY_STAGE,
                actions=(
                    PipelineAction(
                        name=Pipeline.DEPLOY_ACTION,
                        kind=ActionKind.BUILD,
                        inputs=(Pipeline.BUILD_ARTIFACT,),
                        environment=environment,
                        role=deploy_role.name,
                        project=CodeBuild.DEPLOY_PROJECT_ID,
                    ),
                ),
            ),
        ),
        roles=(build_role, deploy_role),
    )
    return definition.validate()

"""Unit tests for the pipeline topology model."""

from dataclasses import replace

import pytest

from config import PipelineSettings
from constants import Pipeline
from pipeline_definition import (
    FUNCTION_CAPABILITIES,
    REGISTRY_CAPABILITIES,
    ArtifactChainError,
    Capability,
    DuplicateNameError,
    PipelineDefinitionError,
    UnknownRoleError,
    UnknownVariableError,
    build_pipeline_definition,
)


def _replace_action(definition, stage_name, **changes):
    stages = tuple(
        replace(stage, actions=(replace(stage.actions[0], **changes),))
        if stage.name == stage_name
        else stage
        for stage in definition.stages
    )
    return replace(definition, stages=stages)


def test_stages_run_source_then_build_then_deploy(definition) -> None:
    assert definition.stage_names == ["Source", "Build", "Deploy"]


def test_stage_order_does_not_depend_on_variable_values() -> None:
    """Overriding variable defaults leaves the topology untouched."""
    settings = PipelineSettings(
        variables={"branch_name_default": "gold", "ecr_tag_default": "v9"}
    )
    assert build_pipeline_definition(settings).stage_names == [
        "Source",
        "Build",
        "Deploy",
    ]


def test_variable_defaults(definition) -> None:
    assert definition.resolve_variables() == {
        "branchName": "bronze",
        "ecrTag": "latest",
    }


def test_variable_reference_syntax(definition) -> None:
    assert definition.variable("branchName").reference() == "#{variables.branchName}"
    assert definition.variable("ecrTag").reference() == "#{variables.ecrTag}"


def test_artifacts_chain_source_to_build_to_deploy(definition) -> None:
    source = definition.stage("Source").actions[0]
    build = definition.stage("Build").actions[0]
    deploy = definition.stage("Deploy").actions[0]

    assert source.outputs == ("SourceArtifact",)
    assert build.inputs == ("SourceArtifact",)
    assert build.outputs == ("BuildArtifact",)
    assert deploy.inputs == ("BuildArtifact",)
    assert deploy.outputs == ()


def test_overrides_are_shared_by_build_and_deploy(definition) -> None:
    overrides = {"branchName": "silver", "ecrTag": "v2"}
    expected = {"BRANCH_NAME": "silver", "ECR_TAG": "v2"}

    assert definition.resolve_environment("Build", overrides) == expected
    assert definition.resolve_environment("Deploy", overrides) == expected


def test_partial_override_keeps_other_default(definition) -> None:
    assert definition.resolve_environment("Deploy", {"ecrTag": "v3"}) == {
        "BRANCH_NAME": "bronze",
        "ECR_TAG": "v3",
    }


def test_source_stage_receives_no_variables(definition) -> None:
    assert definition.resolve_environment("Source") == {}


def test_unknown_override_is_rejected(definition) -> None:
    with pytest.raises(UnknownVariableError):
        definition.resolve_variables({"imageTag": "v2"})


def test_removing_build_input_fails_validation(definition) -> None:
    broken = _replace_action(definition, Pipeline.BUILD_STAGE, inputs=())
    with pytest.raises(ArtifactChainError):
        broken.validate()


def test_removing_deploy_input_fails_validation(definition) -> None:
    broken = _replace_action(definition, Pipeline.DEPLOY_STAGE, inputs=())
    with pytest.raises(ArtifactChainError):
        broken.validate()


def test_consuming_before_production_fails_validation(definition) -> None:
    source, build, deploy = definition.stages
    with pytest.raises(ArtifactChainError, match="before any earlier stage"):
        replace(definition, stages=(build, source, deploy)).validate()


def test_second_producer_fails_validation(definition) -> None:
    broken = _replace_action(
        definition, Pipeline.DEPLOY_STAGE, outputs=(Pipeline.SOURCE_ARTIFACT,)
    )
    with pytest.raises(ArtifactChainError, match="produced by both"):
        broken.validate()


def test_unconsumed_artifact_fails_validation(definition) -> None:
    """Without Deploy nothing consumes BuildArtifact."""
    with pytest.raises(ArtifactChainError, match="never consumed"):
        replace(definition, stages=definition.stages[:2]).validate()


def test_undeclared_artifact_fails_validation(definition) -> None:
    broken = _replace_action(definition, Pipeline.DEPLOY_STAGE, inputs=("Missing",))
    with pytest.raises(ArtifactChainError, match="undeclared artifact"):
        broken.validate()


def test_binding_to_undeclared_variable_fails_validation(definition) -> None:
    broken = _replace_action(
        definition, Pipeline.BUILD_STAGE, environment=(("BRANCH_NAME", "branch"),)
    )
    with pytest.raises(UnknownVariableError):
        broken.validate()


def test_undeclared_role_fails_validation(definition) -> None:
    broken = _replace_action(definition, Pipeline.DEPLOY_STAGE, role="AdminRole")
    with pytest.raises(UnknownRoleError):
        broken.validate()


def test_duplicate_stage_names_fail_validation(definition) -> None:
    source, build, deploy = definition.stages
    renamed = replace(deploy, name=build.name)
    with pytest.raises(DuplicateNameError):
        replace(definition, stages=(source, build, renamed)).validate()


def test_empty_pipeline_fails_validation(definition) -> None:
    with pytest.raises(PipelineDefinitionError):
        replace(definition, stages=()).validate()


def test_construction_is_deterministic(settings) -> None:
    first = build_pipeline_definition(settings)
    second = build_pipeline_definition(settings)
    assert first == second
    assert hash(first) == hash(second)


@pytest.mark.parametrize("mode", ["least_privilege", "managed"])
def test_build_and_deploy_roles_are_separated(mode) -> None:
    definition = build_pipeline_definition(
        PipelineSettings(permissions={"mode": mode})
    )
    build_role = definition.role(definition.stage("Build").actions[0].role)
    deploy_role = definition.role(definition.stage("Deploy").actions[0].role)

    assert build_role.capabilities & REGISTRY_CAPABILITIES
    assert not build_role.capabilities & FUNCTION_CAPABILITIES
    assert deploy_role.capabilities & FUNCTION_CAPABILITIES
    assert not deploy_role.capabilities & REGISTRY_CAPABILITIES


def test_least_privilege_actions(definition) -> None:
    build_actions = definition.role("BuildRole").iam_actions()
    deploy_actions = definition.role("DeployRole").iam_actions()

    assert "ecr:GetAuthorizationToken" in build_actions
    assert "ecr:PutImage" in build_actions
    assert not [a for a in build_actions if a.startswith("lambda:")]

    assert "lambda:UpdateFunctionCode" in deploy_actions
    assert "ecr:PutImage" not in deploy_actions
    assert "ecr:GetAuthorizationToken" not in deploy_actions
    assert "lambda:DeleteFunction" not in deploy_actions


def test_managed_mode_uses_aws_managed_policies() -> None:
    definition = build_pipeline_definition(
        PipelineSettings(permissions={"mode": "managed"})
    )
    assert definition.role("BuildRole").managed_policy_names() == [
        "AmazonEC2ContainerRegistryPowerUser"
    ]
    assert definition.role("DeployRole").managed_policy_names() == [
        "AWSLambda_FullAccess"
    ]
    assert definition.role("BuildRole").iam_actions() == []


def test_roles_trust_codebuild(definition) -> None:
    for role in definition.roles:
        assert role.principal == "codebuild.amazonaws.com"
        assert role.allows(Capability.REGISTRY_AUTH) == (role.name == "BuildRole")

"""
Deployment pipeline for the FastAPI Lambda container image.

This stack creates:
- S3 artifact bucket and the Source/Build artifacts
- CodePipeline (V2) with the branchName and ecrTag variables
- Source stage reading the CodeCommit repository
- Build stage building and pushing the Docker image to ECR
- Deploy stage pointing the Lambda function at the pushed image
- One IAM role per CodeBuild project, built from its capability set
"""

from dataclasses import dataclass, field
from typing import Dict, List

from aws_cdk import ArnFormat, CfnOutput, Stack
from aws_cdk import aws_codebuild as codebuild
from aws_cdk import aws_codecommit as codecommit
from aws_cdk import aws_codepipeline as codepipeline
from aws_cdk import aws_codepipeline_actions as codepipeline_actions
from aws_cdk import aws_ecr as ecr
from cdk_nag import NagSuppressions
from constructs import Construct

from cdk_logger import get_logger
from config import PipelineSettings
from constants import CodeBuild, Pipeline
from lambda_pipeline_constructs.access_roles import PipelineRole, PipelineRoleProps
from lambda_pipeline_constructs.artifact_store import ArtifactStore, ArtifactStoreProps
from lambda_pipeline_constructs.buildspecs import (
    function_deploy_spec,
    image_build_spec,
)
from lambda_pipeline_constructs.codebuild_project import (
    CodeBuildProject,
    CodeBuildProjectProps,
)
from pipeline_definition import (
    ActionKind,
    Capability,
    PipelineAction,
    PipelineDefinition,
    build_pipeline_definition,
)

logger = get_logger("FastApiLambdaPipelineStack")

SOURCE_TRIGGERS = {
    Pipeline.TRIGGER_EVENTS: codepipeline_actions.CodeCommitTrigger.EVENTS,
    Pipeline.TRIGGER_POLL: codepipeline_actions.CodeCommitTrigger.POLL,
    Pipeline.TRIGGER_NONE: codepipeline_actions.CodeCommitTrigger.NONE,
}


@dataclass
class FastApiLambdaPipelineStackProps:
    settings: PipelineSettings = field(default_factory=PipelineSettings)


class FastApiLambdaPipelineStack(Stack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        props: FastApiLambdaPipelineStackProps = None,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        props = props or FastApiLambdaPipelineStackProps()
        settings = props.settings
        self.settings = settings

        logger.info(f"Initializing FastApiLambdaPipelineStack with ID: {construct_id}")

        # Raises before any resource exists if the topology is broken
        self.definition: PipelineDefinition = build_pipeline_definition(settings)
        logger.info(
            f"Pipeline '{self.definition.name}' stages: "
            f"{' -> '.join(self.definition.stage_names)}"
        )

        self.artifact_store = ArtifactStore(
            self,
            "ArtifactStore",
            props=ArtifactStoreProps(
                artifact_names=[a.name for a in self.definition.artifacts],
                removal_policy=settings.artifact_bucket.removal_policy,
                auto_delete_objects=settings.artifact_bucket.auto_delete_objects,
            ),
        )

        self.code_commit_repo = codecommit.Repository.from_repository_name(
            self,
            "CodeCommitRepo",
            settings.source.repository_name,
        )

        self.image_repository = ecr.Repository.from_repository_name(
            self,
            "ImageRepository",
            settings.image.ecr_repository_name,
        )

        function_arn = Stack.of(self).format_arn(
            service="lambda",
            resource="function",
            resource_name=settings.function.function_name,
            arn_format=ArnFormat.COLON_RESOURCE_NAME,
        )
        repository_arn = self.image_repository.repository_arn
        capability_resources: Dict[Capability, List[str]] = {
            Capability.REGISTRY_AUTH: ["*"],  # GetAuthorizationToken has no resource scope
            Capability.REGISTRY_PULL: [repository_arn],
            Capability.REGISTRY_PUSH: [repository_arn],
            Capability.FUNCTION_UPDATE_CODE: [function_arn],
            Capability.FUNCTION_READ: [function_arn],
            Capability.IMAGE_PULL_FOR_FUNCTION: [repository_arn],
        }

        self.roles: Dict[str, PipelineRole] = {}
        for grant in self.definition.roles:
            self.roles[grant.name] = PipelineRole(
                self,
                grant.name,
                props=PipelineRoleProps(grant=grant, resources=capability_resources),
            )

        if not settings.git_credentials.secret_name:
            logger.warning(
                "No git credentials secret configured: USERNAME and TOKEN must be "
                "supplied to the build environment out of band"
            )

        self.projects: Dict[str, CodeBuildProject] = {}
        for action in self._build_actions():
            self.projects[action.project] = CodeBuildProject(
                self,
                action.project,
                props=self._project_props(action),
            )

        stages = []
        for stage in self.definition.stages:
            stages.append(
                codepipeline.StageProps(
                    stage_name=stage.name,
                    actions=[self._render_action(action) for action in stage.actions],
                )
            )

        self.pipeline_variables = {
            variable.name: codepipeline.Variable(
                variable_name=variable.name,
                default_value=variable.default_value,
                description=variable.description,
            )
            for variable in self.definition.variables
        }

        self.pipeline = codepipeline.Pipeline(
            self,
            "CodePipelineFastAPILambda",
            pipeline_name=self.definition.name,
            pipeline_type=codepipeline.PipelineType.V2,
            artifact_bucket=self.artifact_store.bucket,
            stages=stages,
            variables=list(self.pipeline_variables.values()),
        )

        CfnOutput(
            self,
            "PipelineName",
            value=self.pipeline.pipeline_name,
            description="Name of the deployment pipeline",
        )
        CfnOutput(
            self,
            "ArtifactBucketName",
            value=self.artifact_store.bucket.bucket_name,
            description="Bucket holding artifacts passed between stages",
        )
        CfnOutput(
            self,
            "ImageRepositoryUri",
            value=self.image_repository.repository_uri,
            description="ECR repository receiving the built image",
        )

        if settings.enable_cdk_nag:
            self._add_nag_suppressions()

    @property
    def build_role(self) -> PipelineRole:
        return self.roles[self._action(Pipeline.BUILD_STAGE).role]

    @property
    def deploy_role(self) -> PipelineRole:
        return self.roles[self._action(Pipeline.DEPLOY_STAGE).role]

    def _action(self, stage_name: str) -> PipelineAction:
        return self.definition.stage(stage_name).actions[0]

    def _build_actions(self) -> List[PipelineAction]:
        return [
            action
            for stage in self.definition.stages
            for action in stage.actions
            if action.kind is ActionKind.BUILD
        ]

    def _project_props(self, action: PipelineAction) -> CodeBuildProjectProps:
        settings = self.settings
        role = self.roles[action.role].role

        if action.project == CodeBuild.BUILD_PROJECT_ID:
            return CodeBuildProjectProps(
                role=role,
                build_spec=image_build_spec(
                    settings.image.clone_repository_name,
                    settings.image.ecr_repository_name,
                ),
                build_image=settings.image.build_image,
                privileged=True,  # Required for Docker builds
                git_credentials_secret_name=settings.git_credentials.secret_name,
            )

        if action.project == CodeBuild.DEPLOY_PROJECT_ID:
            return CodeBuildProjectProps(
                role=role,
                build_spec=function_deploy_spec(
                    settings.function.function_name,
                    settings.image.ecr_repository_name,
                ),
                build_image=settings.image.build_image,
            )

        logger.error(f"No CodeBuild project is defined for action '{action.name}'")
        raise ValueError(f"No CodeBuild project is defined for action '{action.name}'")

    def _render_action(self, action: PipelineAction) -> codepipeline.IAction:
        store = self.artifact_store

        if action.kind is ActionKind.SOURCE:
            return codepipeline_actions.CodeCommitSourceAction(
                action_name=action.name,
                repository=self.code_commit_repo,
                # Pushes to this branch start the pipeline through EventBridge
                branch=self.settings.source.branch,
                output=store.artifact(action.outputs[0]),
                trigger=SOURCE_TRIGGERS[self.settings.source.trigger],
            )

        return codepipeline_actions.CodeBuildAction(
            action_name=action.name,
            project=self.projects[action.project].project,
            input=store.artifact(action.inputs[0]),
            extra_inputs=[store.artifact(name) for name in action.inputs[1:]] or None,
            outputs=[store.artifact(name) for name in action.outputs] or None,
            environment_variables={
                env_name: codebuild.BuildEnvironmentVariable(
                    value=self.definition.variable(variable_name).reference()
                )
                for env_name, variable_name in action.environment
            },
        )

    def _add_nag_suppressions(self) -> None:
        suppressions = [
            {
                "id": "AwsSolutions-IAM5",
                "reason": "ecr:GetAuthorizationToken cannot be scoped; CodeBuild log "
                "and artifact grants are generated by CDK",
            },
            {
                "id": "AwsSolutions-S1",
                "reason": "Artifact bucket only holds transient pipeline artifacts",
            },
            {
                "id": "AwsSolutions-CB4",
                "reason": "Build projects use the default CodeBuild managed key",
            },
        ]
        if self.settings.permissions.mode == "managed":
            suppressions.append(
                {
                    "id": "AwsSolutions-IAM4",
                    "reason": "permissions.mode 'managed' grants AWS managed policies",
                }
            )
        NagSuppressions.add_stack_suppressions(self, suppressions)
        logger.debug(f"Added {len(suppressions)} cdk-nag suppressions")

from dataclasses import dataclass
from typing import Any, Dict, Optional

import aws_cdk as cdk
from aws_cdk import aws_codebuild as codebuild
from aws_cdk import aws_iam as iam
from constructs import Construct

from cdk_logger import get_logger
from constants import CodeBuild

logger = get_logger("CodeBuildProject")


@dataclass
class CodeBuildProjectProps:
    role: iam.IRole
    build_spec: Dict[str, Any]
    build_image: str = CodeBuild.DEFAULT_BUILD_IMAGE
    privileged: bool = False
    git_credentials_secret_name: Optional[str] = None


class CodeBuildProject(Construct):
    """
    PipelineProject running a fixed buildspec.

    REGION and ACCOUNT_ID come from the stack; USERNAME and TOKEN come from
    the git credentials secret when one is configured.
    """

    def __init__(self, scope: Construct, id: str, *, props: CodeBuildProjectProps) -> None:
        super().__init__(scope, id)

        build_image = getattr(codebuild.LinuxBuildImage, props.build_image, None)
        if build_image is None:
            logger.error(f"Unknown CodeBuild image: {props.build_image}")
            raise ValueError(f"Unknown CodeBuild image: {props.build_image}")

        environment_variables = {
            CodeBuild.REGION_ENV: codebuild.BuildEnvironmentVariable(
                value=cdk.Aws.REGION
            ),
            CodeBuild.ACCOUNT_ID_ENV: codebuild.BuildEnvironmentVariable(
                value=cdk.Aws.ACCOUNT_ID
            ),
        }

        if props.git_credentials_secret_name:
            secret = props.git_credentials_secret_name
            environment_variables[CodeBuild.USERNAME_ENV] = codebuild.BuildEnvironmentVariable(
                value=f"{secret}:{CodeBuild.USERNAME_SECRET_KEY}",
                type=codebuild.BuildEnvironmentVariableType.SECRETS_MANAGER,
            )
            environment_variables[CodeBuild.TOKEN_ENV] = codebuild.BuildEnvironmentVariable(
                value=f"{secret}:{CodeBuild.TOKEN_SECRET_KEY}",
                type=codebuild.BuildEnvironmentVariableType.SECRETS_MANAGER,
            )

        self.project = codebuild.PipelineProject(
            self,
            "Project",
            role=props.role,
            environment=codebuild.BuildEnvironment(
                build_image=build_image,
                privileged=props.privileged,
            ),
            environment_variables=environment_variables,
            build_spec=codebuild.BuildSpec.from_object(props.build_spec),
        )

        logger.info(
            f"Created CodeBuild project {id} (image={props.build_image}, "
            f"privileged={props.privileged})"
        )

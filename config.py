"""
Configuration for the FastAPI Lambda pipeline CDK application.

Settings are read from ``config.json`` next to this file (or from the path in
``PIPELINE_CONFIG_PATH``). Every field has a default, so a missing file yields
the stock pipeline.
"""

import json
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from cdk_logger import get_logger
from constants import (
    CodeBuild,
    CodeCommit,
    ECR,
    Lambda,
    Pipeline,
    Variables,
)

logger = get_logger("Config")

CONFIG_PATH_ENV = "PIPELINE_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.json"

PERMISSION_MODES = ("least_privilege", "managed")
REMOVAL_POLICIES = ("retain", "destroy")
SOURCE_TRIGGERS = (Pipeline.TRIGGER_EVENTS, Pipeline.TRIGGER_POLL, Pipeline.TRIGGER_NONE)


class ConfigError(ValueError):
    """Raised when the configuration file cannot be read or is invalid."""


class SourceConfig(BaseModel):
    repository_name: str = Field(
        CodeCommit.DEFAULT_REPOSITORY_NAME, description="CodeCommit repository name"
    )
    branch: str = Field(
        CodeCommit.DEFAULT_BRANCH,
        description="Branch watched by the source action; pushes here start the pipeline",
    )
    trigger: str = Field(Pipeline.TRIGGER_EVENTS, description="events, poll or none")

    @field_validator("repository_name", "branch")
    @classmethod
    def not_empty(cls, v):
        if not v.strip():
            raise ValueError("must not be empty")
        return v

    @field_validator("trigger")
    @classmethod
    def known_trigger(cls, v):
        if v not in SOURCE_TRIGGERS:
            raise ValueError(f"trigger must be one of {', '.join(SOURCE_TRIGGERS)}")
        return v


class VariablesConfig(BaseModel):
    branch_name_default: str = Field(
        Variables.BRANCH_NAME_DEFAULT, description="Default of the branchName variable"
    )
    ecr_tag_default: str = Field(
        Variables.ECR_TAG_DEFAULT, description="Default of the ecrTag variable"
    )


class ImageConfig(BaseModel):
    ecr_repository_name: str = Field(
        ECR.DEFAULT_REPOSITORY_NAME, description="ECR repository receiving the image"
    )
    clone_repository_name: str = Field(
        CodeCommit.DEFAULT_CLONE_REPOSITORY_NAME,
        description="Repository cloned inside the build project",
    )
    build_image: str = Field(
        CodeBuild.DEFAULT_BUILD_IMAGE,
        description="Name of a codebuild.LinuxBuildImage constant",
    )


class FunctionConfig(BaseModel):
    function_name: str = Field(
        Lambda.DEFAULT_FUNCTION_NAME, description="Lambda function updated by Deploy"
    )


class GitCredentialsConfig(BaseModel):
    secret_name: Optional[str] = Field(
        None,
        description="Secrets Manager secret holding 'username' and 'token' for the clone",
    )


class PermissionsConfig(BaseModel):
    mode: str = Field("least_privilege", description="least_privilege or managed")

    @field_validator("mode")
    @classmethod
    def known_mode(cls, v):
        if v not in PERMISSION_MODES:
            raise ValueError(f"mode must be one of {', '.join(PERMISSION_MODES)}")
        return v


class ArtifactBucketConfig(BaseModel):
    removal_policy: str = Field("retain", description="retain or destroy")
    auto_delete_objects: bool = False

    @field_validator("removal_policy")
    @classmethod
    def known_policy(cls, v):
        if v not in REMOVAL_POLICIES:
            raise ValueError(
                f"removal_policy must be one of {', '.join(REMOVAL_POLICIES)}"
            )
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"


class PipelineSettings(BaseModel):
    """Root configuration model."""

    environment: str = "dev"
    pipeline_name: str = Pipeline.DEFAULT_NAME
    source: SourceConfig = Field(default_factory=SourceConfig)
    variables: VariablesConfig = Field(default_factory=VariablesConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    function: FunctionConfig = Field(default_factory=FunctionConfig)
    git_credentials: GitCredentialsConfig = Field(default_factory=GitCredentialsConfig)
    permissions: PermissionsConfig = Field(default_factory=PermissionsConfig)
    artifact_bucket: ArtifactBucketConfig = Field(default_factory=ArtifactBucketConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    enable_cdk_nag: bool = False
    resource_application_tag: Optional[str] = None


def load_config(path: Optional[Union[str, Path]] = None) -> PipelineSettings:
    """
    Load settings from ``path``, ``$PIPELINE_CONFIG_PATH`` or ``config.json``.

    A missing file at the default location yields default settings; a missing
    file that was asked for explicitly is an error.
    """
    explicit = path is not None or CONFIG_PATH_ENV in os.environ
    config_path = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)

    if not config_path.exists():
        if explicit:
            logger.error(f"Configuration file not found: {config_path}")
            raise ConfigError(f"Configuration file not found: {config_path}")
        logger.info(f"No configuration file at {config_path}, using defaults")
        return PipelineSettings()

    logger.info(f"Loading configuration from {config_path}")
    try:
        with open(config_path, encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read configuration file {config_path}: {str(e)}")
        raise ConfigError(f"Failed to read configuration file {config_path}: {e}") from e

    try:
        return PipelineSettings(**raw)
    except (ValidationError, TypeError) as e:
        logger.error(f"Invalid configuration in {config_path}: {str(e)}")
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e

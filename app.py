#!/usr/bin/env python3
"""Entry point for the FastAPI Lambda pipeline CDK application."""
import os

import aws_cdk as cdk
from cdk_nag import AwsSolutionsChecks

from cdk_logger import CDKLogger, get_logger
from config import load_config
from constants import DEFAULT_TAGS, STACK_ID
from lambda_pipeline_stacks.fast_api_lambda_pipeline_stack import (
    FastApiLambdaPipelineStack,
    FastApiLambdaPipelineStackProps,
)

config = load_config()

# Initialize global logger configuration
CDKLogger.set_level(config.logging.level)

# Create application-level logger
logger = get_logger("CDKApp")
logger.info(
    f"Initializing FastAPI Lambda pipeline CDK code with log level: {config.logging.level}"
)

app = cdk.App()

if "CDK_DEFAULT_ACCOUNT" in os.environ and "CDK_DEFAULT_REGION" in os.environ:
    env = cdk.Environment(
        account=os.environ["CDK_DEFAULT_ACCOUNT"],
        region=os.environ["CDK_DEFAULT_REGION"],
    )
else:
    env = None

_ = FastApiLambdaPipelineStack(
    app,
    STACK_ID,
    props=FastApiLambdaPipelineStackProps(settings=config),
    env=env,
)

for key, value in DEFAULT_TAGS.items():
    cdk.Tags.of(app).add(key, value)

if config.resource_application_tag:
    cdk.Tags.of(app).add("Application", config.resource_application_tag)

if config.enable_cdk_nag:
    logger.info("Adding AWS Solutions cdk-nag checks")
    cdk.Aspects.of(app).add(AwsSolutionsChecks(verbose=True))

app.synth()

"""Shared pytest configuration and fixtures."""

import aws_cdk as cdk
import pytest
from aws_cdk.assertions import Template

from config import PipelineSettings
from lambda_pipeline_stacks.fast_api_lambda_pipeline_stack import (
    FastApiLambdaPipelineStack,
    FastApiLambdaPipelineStackProps,
)
from pipeline_definition import build_pipeline_definition


def _synth(settings: PipelineSettings):
    app = cdk.App()
    stack = FastApiLambdaPipelineStack(
        app,
        "TestPipelineStack",
        props=FastApiLambdaPipelineStackProps(settings=settings),
    )
    return stack, Template.from_stack(stack)


@pytest.fixture
def settings() -> PipelineSettings:
    return PipelineSettings()


@pytest.fixture
def definition(settings):
    return build_pipeline_definition(settings)


@pytest.fixture(scope="session")
def synth():
    """Synthesize a stack from settings; returns (stack, template)."""
    return _synth


@pytest.fixture(scope="session")
def default_stack(synth):
    return synth(PipelineSettings())

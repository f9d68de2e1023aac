"""
Buildspec documents for the Build and Deploy CodeBuild projects.

Both functions return plain dicts so they can be inspected without
synthesizing; the projects wrap them with ``codebuild.BuildSpec.from_object``.
"""

from typing import Any, Dict

from constants import CodeBuild, CodeCommit, ECR


def image_build_spec(
    clone_repository_name: str, ecr_repository_name: str
) -> Dict[str, Any]:
    """Clone, log in to ECR, build, tag and push the image tagged ``$ECR_TAG``."""
    image_uri = ECR.image_uri(ecr_repository_name)
    return {
        "version": CodeBuild.BUILDSPEC_VERSION,
        "phases": {
            "install": {
                "commands": [
                    "docker --version",  # Ensure Docker is available
                ],
            },
            "pre_build": {
                "commands": [
                    "echo Cloning the repository",
                    f"git clone -b $BRANCH_NAME {CodeCommit.clone_url(clone_repository_name)}",
                    f"cd {clone_repository_name}",
                    "ls -al",
                    "echo Logging in to Amazon ECR",
                    "aws ecr get-login-password --region $REGION | docker login "
                    f"--username AWS --password-stdin {ECR.REGISTRY_HOST}",
                ],
            },
            "build": {
                "commands": [
                    "echo Building the Docker image",
                    f"docker build -t {ECR.LOCAL_IMAGE_NAME} .",
                    f"docker tag {ECR.LOCAL_IMAGE_NAME}:latest {image_uri}",
                ],
            },
            "post_build": {
                "commands": [
                    "echo Pushing the Docker image to ECR",
                    f"docker push {image_uri}",
                ],
            },
        },
    }


def function_deploy_spec(function_name: str, ecr_repository_name: str) -> Dict[str, Any]:
    """Point ``function_name`` at the image tagged ``$ECR_TAG``."""
    return {
        "version": CodeBuild.BUILDSPEC_VERSION,
        "phases": {
            "pre_build": {
                "commands": [
                    "echo Preparing to deploy Docker image to Lambda",
                ],
            },
            "build": {
                "commands": [
                    "echo Updating Lambda function with the latest Docker image",
                    "aws lambda update-function-code"
                    f" --function-name {function_name}"
                    f" --image-uri {ECR.image_uri(ecr_repository_name)}",
                ],
            },
            "post_build": {
                "commands": [
                    "echo Deployment to Lambda completed",
                ],
            },
        },
    }

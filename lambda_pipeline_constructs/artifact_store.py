from dataclasses import dataclass
from typing import Dict, Sequence

from aws_cdk import RemovalPolicy
from aws_cdk import aws_codepipeline as codepipeline
from aws_cdk import aws_s3 as s3
from constructs import Construct

from cdk_logger import get_logger
from constants import S3

logger = get_logger("ArtifactStore")


@dataclass
class ArtifactStoreProps:
    artifact_names: Sequence[str]
    removal_policy: str = "retain"
    auto_delete_objects: bool = False


class ArtifactStore(Construct):
    """
    S3 bucket holding intermediate files between pipeline stages, plus one
    named codepipeline.Artifact per declared artifact handle.
    """

    def __init__(self, scope: Construct, id: str, *, props: ArtifactStoreProps) -> None:
        super().__init__(scope, id)

        if props.auto_delete_objects and props.removal_policy != "destroy":
            logger.error("auto_delete_objects requires removal_policy 'destroy'")
            raise ValueError("auto_delete_objects requires removal_policy 'destroy'")

        self.bucket = s3.Bucket(
            self,
            S3.ARTIFACT_BUCKET_ID,
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            removal_policy=(
                RemovalPolicy.DESTROY
                if props.removal_policy == "destroy"
                else RemovalPolicy.RETAIN
            ),
            auto_delete_objects=props.auto_delete_objects,
        )

        self._artifacts: Dict[str, codepipeline.Artifact] = {
            name: codepipeline.Artifact(name) for name in props.artifact_names
        }
        logger.info(
            f"Artifact store created with artifacts: {', '.join(self._artifacts)}"
        )

    def artifact(self, name: str) -> codepipeline.Artifact:
        return self._artifacts[name]

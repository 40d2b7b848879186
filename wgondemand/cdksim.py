"""Publish synthesized CDK assets the way `cdk deploy` does before a stack create.

The bundled cdk.out directory holds a deployment manifest (manifest.json),
an asset manifest and the stack template. Assets are packaged and uploaded
to the bootstrap staging bucket under the roles the manifests name, so the
stack template can reference them.
"""

import io
import json
import re
import zipfile
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ManifestError, UnknownPackagingError
from .templates import SYNTH_QUALIFIER, asset_path
from .utils import debug, log, logger

STACK_ARTIFACT = "aws:cloudformation:stack"
ASSET_MANIFEST_ARTIFACT = "cdk:asset-manifest"

DEPLOY_SESSION_NAME = "wg-ondemand-deploy"
UPLOAD_SESSION_NAME = "wg-ondemand-asset-upload"

_AWS_PLACEHOLDER = re.compile(r"\$\{AWS::([A-Za-z0-9]+)\}")


def expand_placeholders(text: str, values: dict[str, str]) -> str:
    """Replace ${AWS::Field} placeholders; unknown fields are left verbatim."""
    return _AWS_PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), text)


def package_asset(path: Path, packaging: str) -> bytes:
    """Package an asset source for upload.

    :param path: Source file or directory
    :param packaging: "file" to read one file verbatim, "zip" to zip a directory
    :return: Bytes to upload
    :raises UnknownPackagingError: For any other packaging value
    :raises OSError: If the source cannot be read
    """
    if packaging == "file":
        return path.read_bytes()

    if packaging == "zip":
        if not path.is_dir():
            raise NotADirectoryError(f"Asset directory not found: '{path}'")
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
            for file in sorted(path.rglob("*")):
                if file.is_file():
                    zf.write(file, file.relative_to(path).as_posix())
        return buf.getvalue()

    raise UnknownPackagingError(packaging, str(path))


def _destination(asset_id: str, dest_id: str, dest: dict) -> tuple[str, str, str]:
    """:return: (bucket, key, role ARN) of an asset destination"""
    fields = ("bucketName", "objectKey", "assumeRoleArn")
    missing = [f for f in fields if not dest.get(f)]
    if missing:
        raise ManifestError(
            f"Destination '{dest_id}' of asset '{asset_id}' has no {', '.join(missing)}"
        )
    return dest["bucketName"], dest["objectKey"], dest["assumeRoleArn"]


def _credentials_kwargs(credentials: dict) -> dict:
    return {
        "aws_access_key_id": credentials["AccessKeyId"],
        "aws_secret_access_key": credentials["SecretAccessKey"],
        "aws_session_token": credentials["SessionToken"],
    }


class AssetDeployer:
    """Uploads the assets of a synthesized cdk.out directory.

    :param sts: boto3 STS client for the caller's own credentials
    :param region: Target region
    :param qualifier: Bootstrap qualifier substituted for the default one
    :param cdk_out: Synthesized output directory (default: bundled copy)
    :param session_factory: Callable returning boto3 Session-like objects
    :param partition: AWS partition
    """

    def __init__(
        self,
        sts,
        *,
        region: str,
        qualifier: str = SYNTH_QUALIFIER,
        cdk_out: Path | None = None,
        session_factory=boto3.Session,
        partition: str = "aws",
    ):
        self.sts = sts
        self.region = region
        self.qualifier = qualifier
        self.cdk_out = Path(cdk_out) if cdk_out else asset_path("cdk.out")
        self.session_factory = session_factory
        self.partition = partition
        self._values: dict[str, str] | None = None

    def placeholder_values(self) -> dict[str, str]:
        if self._values is None:
            account = self.sts.get_caller_identity()["Account"]
            self._values = {
                "AccountId": account,
                "Region": self.region,
                "Partition": self.partition,
            }
        return self._values

    def _read(self, name: str, expand: bool = True) -> str:
        path = self.cdk_out / name
        try:
            text = path.read_text()
        except OSError as e:
            raise ManifestError(f"Cannot read '{path}': {e}") from e
        text = text.replace(SYNTH_QUALIFIER, self.qualifier)
        if expand:
            text = expand_placeholders(text, self.placeholder_values())
        return text

    def _load_json(self, name: str) -> dict:
        try:
            return json.loads(self._read(name))
        except json.JSONDecodeError as e:
            raise ManifestError(f"Invalid JSON in '{name}': {e}") from e

    def load_deployment_manifest(self) -> dict:
        return self._load_json("manifest.json")

    def _artifact(self, manifest: dict, artifact_type: str) -> dict:
        matches = [
            a for a in manifest.get("artifacts", {}).values() if a.get("type") == artifact_type
        ]
        if len(matches) != 1:
            raise ManifestError(
                f"Expected exactly one '{artifact_type}' artifact, found {len(matches)}"
            )
        return matches[0].get("properties", {})

    def stack_properties(self, manifest: dict | None = None) -> dict:
        return self._artifact(manifest or self.load_deployment_manifest(), STACK_ARTIFACT)

    def load_asset_manifest(self, manifest: dict | None = None) -> dict:
        props = self._artifact(
            manifest or self.load_deployment_manifest(), ASSET_MANIFEST_ARTIFACT
        )
        if "file" not in props:
            raise ManifestError("Asset manifest artifact has no 'file' property")
        return self._load_json(props["file"])

    def stack_template(self) -> str:
        """:return: Template body of the stack artifact, qualifier rewritten"""
        props = self.stack_properties()
        if "templateFile" not in props:
            raise ManifestError("Stack artifact has no 'templateFile' property")
        return self._read(props["templateFile"], expand=False)

    def _assume(self, sts, role_arn: str, session_name: str):
        log(f"Assuming role '{role_arn}'")
        response = sts.assume_role(RoleArn=role_arn, RoleSessionName=session_name)
        return self.session_factory(
            **_credentials_kwargs(response["Credentials"]), region_name=self.region
        )

    def deploy(self) -> list[str]:
        """Package every asset and upload it to each of its destinations.

        Publishing is best-effort: if the deploy role cannot be assumed
        nothing is uploaded, a failed upload is logged and skipped, and an
        asset that cannot be read is logged and skipped. The stack create
        that follows reports whatever is missing. An unknown packaging type
        or a malformed manifest aborts the run.

        :return: s3:// URLs of the uploads that succeeded
        :raises UnknownPackagingError: If an asset names an unknown packaging
        :raises ManifestError: If the manifests are missing or malformed
        """
        manifest = self.load_deployment_manifest()
        role_arn = self.stack_properties(manifest).get("assumeRoleArn")
        if not role_arn:
            raise ManifestError("Stack artifact has no 'assumeRoleArn' property")
        assets = self.load_asset_manifest(manifest)

        try:
            deploy_sts = self._assume(self.sts, role_arn, DEPLOY_SESSION_NAME).client("sts")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to assume deploy role, no assets published: {e}")
            return []

        uploaded = []
        for asset_id, asset in assets.get("files", {}).items():
            source = asset.get("source", {})
            try:
                body = package_asset(
                    self.cdk_out / source.get("path", ""), source.get("packaging", "")
                )
            except OSError as e:
                logger.error(f"Failed to package asset '{asset_id}': {e}")
                continue
            debug(f"Packaged asset '{asset_id}' ({len(body)} bytes)")

            for dest_id, dest in asset.get("destinations", {}).items():
                bucket, key, dest_role = _destination(asset_id, dest_id, dest)
                try:
                    session = self._assume(deploy_sts, dest_role, UPLOAD_SESSION_NAME)
                    log(f"Uploading asset to 's3://{bucket}/{key}'")
                    session.client("s3").put_object(Bucket=bucket, Key=key, Body=body)
                except (ClientError, BotoCoreError) as e:
                    logger.error(f"Failed to upload asset '{asset_id}' to '{dest_id}': {e}")
                    continue
                uploaded.append(f"s3://{bucket}/{key}")
        return uploaded

"""Runtime configuration from the environment and .env files."""

import configparser
import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

from .utils import log

DEFAULT_QUALIFIER = "c762bc03"


@dataclass(frozen=True)
class Settings:
    """Explicit configuration threaded into provisioner construction.

    :param qualifier: Bootstrap qualifier naming the staging bucket and roles
    :param hcloud_token: Hetzner Cloud API token
    :param aws_profile: AWS profile name (None for the default credential chain)
    """

    qualifier: str = DEFAULT_QUALIFIER
    hcloud_token: str | None = None
    aws_profile: str | None = None


def load_settings(
    *,
    qualifier: str | None = None,
    hcloud_token: str | None = None,
    aws_profile: str | None = None,
) -> Settings:
    """Build Settings from keyword overrides, then the environment, then defaults.

    A .env file in the working directory is loaded first.
    """
    load_dotenv(find_dotenv(usecwd=True))
    return Settings(
        qualifier=qualifier
        or os.getenv("WG_ONDEMAND_QUALIFIER")
        or os.getenv("CDK_CUSTOM_QUALIFIER")
        or DEFAULT_QUALIFIER,
        hcloud_token=hcloud_token or os.getenv("HCLOUD_TOKEN") or None,
        aws_profile=aws_profile or os.getenv("AWS_PROFILE") or None,
    )


def get_aws_config(profile: str | None = None, region: str | None = None) -> dict:
    """Load AWS configuration for boto3 session initialization.

    Reads profiles from ~/.aws/credentials and ~/.aws/config. An unknown
    profile falls back to the default credential chain. Does not validate
    credentials.

    :param profile: Explicit AWS profile name (overrides AWS_PROFILE env var)
    :param region: Explicit region (overrides AWS_REGION env var)
    :return: Dict with profile_name and/or region_name keys for boto3.Session()
    """
    aws_config = {}
    available_profiles = set()
    for path in ["~/.aws/credentials", "~/.aws/config"]:
        path = os.path.expanduser(path)
        if os.path.exists(path):
            cfg = configparser.ConfigParser()
            cfg.read(path)
            for section in cfg.sections():
                if section.startswith("profile "):
                    available_profiles.add(section[8:])
                else:
                    available_profiles.add(section)

    profile_name = profile or os.getenv("AWS_PROFILE")
    if profile_name:
        if profile_name in available_profiles:
            aws_config["profile_name"] = profile_name
        else:
            log(f"AWS profile '{profile_name}' not found, using default credential chain...")
            os.environ.pop("AWS_PROFILE", None)

    region = region or os.getenv("AWS_REGION")
    if region:
        aws_config["region_name"] = region

    return aws_config

#!/usr/bin/env python3
"""Provision on-demand WireGuard gateways.

Prerequisites: AWS credentials (aws backend) or HCLOUD_TOKEN (hetzner backend).

Usage: wg-ondemand <command> [options]

Examples:
    wg-ondemand deploy -k "$(cat client.pub)" -r eu-central-1
    wg-ondemand deploy -k "$(cat client.pub)" -t hetzner -r fsn1
    wg-ondemand delete -r eu-central-1
    wg-ondemand regions -t hetzner
"""

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Annotated, TypeVar

import cyclopts
import httpx
import paramiko
from botocore.exceptions import BotoCoreError, ClientError

from .cancel import CancelToken
from .config import load_settings
from .errors import ProvisionError, TeardownError
from .provisioner import get_provisioner
from .types import (
    DEFAULT_CLIENT_ADDRESS,
    DEFAULT_PORT,
    DEFAULT_SERVER_ADDRESS,
    DeprovisionRequest,
    ProviderName,
    ProvisionRequest,
    ProvisionResult,
)
from .utils import error, log, logger, setup_logging, warn

T = TypeVar("T")

DEFAULT_ID = "wg-ondemand"

# Failures reported as a one-line error instead of a traceback
BACKEND_ERRORS = (
    ProvisionError,
    ClientError,
    BotoCoreError,
    httpx.HTTPError,
    paramiko.SSHException,
    OSError,
)

app = cyclopts.App(
    name="wg-ondemand", help="Provision on-demand WireGuard gateways", sort_key=None
)

Verbose = Annotated[bool, cyclopts.Parameter(name=["--verbose", "-v"])]
Provider = Annotated[ProviderName, cyclopts.Parameter(name=["--type", "-t"])]
Region = Annotated[str, cyclopts.Parameter(name=["--region", "-r"])]
Id = Annotated[str, cyclopts.Parameter(name=["--id", "-i"])]


def run_cancellable(fn: Callable[[CancelToken], T], timeout: float | None = None) -> T:
    """Run fn on a worker thread, turning Ctrl-C into a cancel of its token.

    :param fn: Operation taking the cancellation token
    :param timeout: Overall deadline in seconds
    """
    cancel = CancelToken(timeout)
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="wg-ondemand") as pool:
        future = pool.submit(fn, cancel)
        while True:
            try:
                return future.result()
            except KeyboardInterrupt:
                if cancel.cancelled:
                    raise
                warn("Interrupted, cancelling... (Ctrl-C again to abort)")
                cancel.cancel()


def peer_config(result: ProvisionResult, port: int) -> str:
    """:return: WireGuard [Peer] section for the client configuration"""
    return "\n".join(
        [
            "[Peer]",
            f"PublicKey = {result.server_public_key}",
            "AllowedIPs = 0.0.0.0/0",
            f"Endpoint = {result.ip}:{port}",
        ]
    )


@app.command(name="deploy")
def deploy(
    *,
    public_key: Annotated[str, cyclopts.Parameter(name=["--public-key", "-k"])],
    port: Annotated[int, cyclopts.Parameter(name=["--port", "-p"])] = DEFAULT_PORT,
    region: Region = "",
    id: Id = DEFAULT_ID,
    provider: Provider = "aws",
    client_address: str = DEFAULT_CLIENT_ADDRESS,
    server_address: str = DEFAULT_SERVER_ADDRESS,
    timeout: float | None = None,
    verbose: Verbose = False,
):
    """Create a gateway and print the client's WireGuard peer section.

    :param public_key: Client WireGuard public key
    :param port: WireGuard listen port
    :param region: AWS region or Hetzner location
    :param id: Gateway name (stack or server name)
    :param provider: Backend (aws or hetzner)
    :param client_address: Client tunnel address
    :param server_address: Server tunnel address
    :param timeout: Give up after this many seconds
    :param verbose: Enable debug logging
    """
    setup_logging(logging.DEBUG if verbose else logging.INFO)
    try:
        request = ProvisionRequest(
            client_public_key=public_key,
            client_address=client_address,
            server_address=server_address,
            port=port,
            provider=provider,
            region=region,
        )
    except ValueError as e:
        error(str(e))

    try:
        p = get_provisioner(provider, load_settings())
        result = run_cancellable(lambda cancel: p.provision(id, request, cancel), timeout)
    except BACKEND_ERRORS as e:
        error(f"Provisioning failed: {e}")

    log(f"Gateway '{id}' ready at {result.ip}")
    print(peer_config(result, request.port))


@app.command(name="delete")
def delete(
    *,
    region: Region = "",
    id: Id = DEFAULT_ID,
    provider: Provider = "aws",
    timeout: float | None = None,
    verbose: Verbose = False,
):
    """Delete a gateway and every resource created for it.

    :param region: AWS region or Hetzner location
    :param id: Gateway name (stack or server name)
    :param provider: Backend (aws or hetzner)
    :param timeout: Give up after this many seconds
    :param verbose: Enable debug logging
    """
    setup_logging(logging.DEBUG if verbose else logging.INFO)
    try:
        p = get_provisioner(provider, load_settings())
        run_cancellable(
            lambda cancel: p.deprovision(id, DeprovisionRequest(region=region), cancel),
            timeout,
        )
    except TeardownError as eg:
        for e in eg.exceptions:
            notes = "; ".join(getattr(e, "__notes__", []))
            logger.error(f"{notes}: {e}")
        error(f"Teardown incomplete: {eg.message}")
    except BACKEND_ERRORS as e:
        error(f"Teardown failed: {e}")


@app.command(name="regions")
def regions(*, provider: Provider = "aws", verbose: Verbose = False):
    """List the locations a gateway can be deployed to.

    :param provider: Backend (aws or hetzner)
    :param verbose: Enable debug logging
    """
    setup_logging(logging.DEBUG if verbose else logging.INFO)
    try:
        p = get_provisioner(provider, load_settings())
        locations = p.locations()
    except BACKEND_ERRORS as e:
        error(f"Failed to list locations: {e}")

    for loc in locations:
        print(f"{loc['key']}: {loc['city']}, {loc['country']}")


if __name__ == "__main__":
    app()

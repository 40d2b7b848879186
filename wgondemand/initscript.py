"""Render, run and parse the WireGuard bootstrap script."""

import json
import secrets
from collections.abc import Callable

from .errors import MalformedOutputError, RemoteCommandError
from .templates import load_asset, render
from .types import InitScriptOutcome, ProvisionRequest
from .utils import log, logger

INIT_SCRIPT = "init.sh"


def new_sentinel() -> str:
    """:return: Random token marking the start of the script's JSON trailer"""
    return secrets.token_hex(32)


def render_init_script(request: ProvisionRequest, sentinel: str) -> str:
    params = {
        "OutputSeparator": sentinel,
        "WgPort": str(request.port),
        "ClientWgIp": request.client_address,
        "ClientPublicKey": request.client_public_key,
        "ServerWgIp": request.server_address,
        "Region": request.region,
        "Type": request.provider,
    }
    return render(load_asset(INIT_SCRIPT), params)


def parse_init_output(stdout: str, sentinel: str) -> InitScriptOutcome:
    """Extract the structured result that follows the sentinel in stdout.

    The script prints free text, then the sentinel exactly once, then a
    single JSON object. Anything else is a malformed-output error.

    :param stdout: Full captured stdout of the init script
    :param sentinel: Token the script was rendered with
    :raises MalformedOutputError: If the sentinel count is not one, or the
        trailer is not a JSON object carrying ServerWgPublicKey
    """
    parts = stdout.split(sentinel)
    if len(parts) != 2:
        raise MalformedOutputError(
            f"Expected output separator exactly once, found {len(parts) - 1}", stdout
        )

    try:
        fields = json.loads(parts[1])
    except json.JSONDecodeError as e:
        raise MalformedOutputError(f"Invalid JSON after output separator: {e}", stdout) from e

    if not isinstance(fields, dict) or not isinstance(
        fields.get("ServerWgPublicKey"), str
    ):
        raise MalformedOutputError("Output is missing 'ServerWgPublicKey'", stdout)
    return InitScriptOutcome(fields=fields)


def run_init_script(
    request: ProvisionRequest, run_script: Callable[[str], str]
) -> InitScriptOutcome:
    """Configure WireGuard on the host and return its generated public key.

    :param request: Gateway configuration rendered into the script
    :param run_script: Callback that runs a script remotely and returns stdout
    """
    sentinel = new_sentinel()
    script = render_init_script(request, sentinel)

    log("Running init script...")
    try:
        stdout = run_script(script)
    except RemoteCommandError as e:
        logger.error(f"Init script failed: {e}\nstdout:\n{e.stdout}\nstderr:\n{e.stderr}")
        raise

    try:
        return parse_init_output(stdout, sentinel)
    except MalformedOutputError:
        logger.error(f"Init script did not return expected output:\n{stdout}")
        raise

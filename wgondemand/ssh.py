"""Direct SSH session executor with per-run ephemeral keys."""

import io
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import paramiko
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from fabric import Connection

from .cancel import CancelToken
from .errors import ProvisionCancelled, RemoteCommandError
from .remote import CommandResult
from .utils import debug

SSH_PORT = 22
SSH_USER = "root"
CONNECT_TIMEOUT = 10
CANCEL_POLL = 0.25


@dataclass(frozen=True)
class EphemeralKey:
    """An ed25519 key pair that lives only for one provisioning run."""

    pkey: paramiko.PKey
    public_key: str  # OpenSSH authorized_keys line


def generate_ssh_key(comment: str = "wg-ondemand") -> EphemeralKey:
    private = Ed25519PrivateKey.generate()
    pem = private.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.OpenSSH,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public = private.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    ).decode()
    pkey = paramiko.Ed25519Key.from_private_key(io.StringIO(pem))
    return EphemeralKey(pkey=pkey, public_key=f"{public} {comment}")


class _AcceptHostKey(paramiko.MissingHostKeyPolicy):
    """Accept any host key without recording it.

    The host was created moments ago by this process.
    """

    def missing_host_key(self, client, hostname, key):
        debug(f"Accepting {key.get_name()} host key for {hostname}")


class SSHExecutor:
    """Runs scripts over SSH as root, authenticated with an ephemeral key.

    Host key verification is disabled and nothing is written to
    known_hosts. The session runs on a worker thread so cancellation can
    abandon it: if the token fires first the connection is closed and
    ProvisionCancelled is raised even if the remote command is still going.

    :param key: Ephemeral key pair installed on the host
    :param user: SSH user
    :param port: SSH port
    :param connect_timeout: TCP connect timeout in seconds
    """

    def __init__(
        self,
        key: EphemeralKey,
        *,
        user: str = SSH_USER,
        port: int = SSH_PORT,
        connect_timeout: float = CONNECT_TIMEOUT,
    ):
        self.key = key
        self.user = user
        self.port = port
        self.connect_timeout = connect_timeout

    def _connect(self, ip: str) -> Connection:
        conn = Connection(
            ip,
            user=self.user,
            port=self.port,
            connect_timeout=self.connect_timeout,
            connect_kwargs={
                "pkey": self.key.pkey,
                "look_for_keys": False,
                "allow_agent": False,
            },
        )
        conn.client.get_host_keys().clear()
        conn.client.set_missing_host_key_policy(_AcceptHostKey())
        return conn

    def run(self, target: str, script: str, cancel: CancelToken) -> CommandResult:
        """Run script on host `target` via bash.

        :param target: Host IP address
        :param script: Shell script text
        :param cancel: Cancellation token raced against completion
        :return: Captured output of a successful run
        :raises RemoteCommandError: If the script exits non-zero
        :raises ProvisionCancelled: If cancelled before the script finished
        """
        cancel.raise_if_cancelled()
        escaped = script.replace("'", "'\\''")
        cmd = f"bash -c '{escaped}'"

        conn = self._connect(target)
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ssh")
        try:
            future = pool.submit(conn.run, cmd, hide=True, warn=True, in_stream=False)
            while not future.done():
                if cancel.wait(CANCEL_POLL):
                    raise ProvisionCancelled(f"SSH command on {target} cancelled")
            result = future.result()
        finally:
            conn.close()
            pool.shutdown(wait=False)

        if result.failed:
            raise RemoteCommandError(
                f"SSH command on {target} exited with {result.exited}",
                stdout=result.stdout,
                stderr=result.stderr,
                exit_code=result.exited,
            )
        return CommandResult(stdout=result.stdout, stderr=result.stderr, exit_code=0)

"""Hetzner Cloud backend: SSH key, firewall and server over the REST API."""

import time

import httpx

from .cancel import CancelToken
from .config import Settings
from .errors import ConfigurationError, ProvisionError, ReadinessTimeout, TeardownError
from .initscript import run_init_script
from .remote import READY_TIMEOUT, wait_until_ready
from .retry import RETRY_ATTEMPTS, RETRY_DELAY
from .ssh import SSH_PORT, SSHExecutor, generate_ssh_key
from .teardown import TeardownTask, run_teardown
from .types import (
    DeprovisionRequest,
    Location,
    ProviderName,
    ProvisionRequest,
    ProvisionResult,
)
from .utils import debug, log, logger

API_URL = "https://api.hetzner.cloud/v1"
SERVER_TYPE = "cx22"
SERVER_IMAGE = "rocky-9"
POLL_INTERVAL = 10
READY_INTERVAL = 5
RUNNING_TIMEOUT = 300


class HetznerAPIError(ProvisionError):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(f"Hetzner API error {status_code} ({code}): {message}")
        self.status_code = status_code
        self.code = code

    @property
    def not_found(self) -> bool:
        return self.status_code == 404 or self.code == "not_found"


def firewall_rules(port: int) -> list[dict]:
    """Inbound rules for the gateway: WireGuard over UDP and SSH over TCP."""
    anywhere = ["0.0.0.0/0", "::/0"]
    return [
        {
            "direction": "in",
            "protocol": "udp",
            "port": str(port),
            "source_ips": anywhere,
            "description": "Wireguard",
        },
        {
            "direction": "in",
            "protocol": "tcp",
            "port": str(SSH_PORT),
            "source_ips": anywhere,
            "description": "SSH",
        },
    ]


class HetznerClient:
    """Thin wrapper over the Hetzner Cloud API.

    :param token: API token sent as a Bearer credential
    :param transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(self, token: str, *, api_url: str = API_URL, transport=None):
        self._http = httpx.Client(
            base_url=api_url,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
            timeout=60,
        )

    def __enter__(self) -> "HetznerClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def request(self, method: str, path: str, **kwargs) -> dict:
        """Make an authenticated API request.

        :return: Parsed JSON body ({} for empty responses)
        :raises HetznerAPIError: On any non-2xx response
        """
        resp = self._http.request(method, path, **kwargs)
        if resp.is_error:
            try:
                err = resp.json().get("error", {})
            except ValueError:
                err = {}
            raise HetznerAPIError(
                resp.status_code, err.get("code", "unknown"), err.get("message", resp.text)
            )
        if not resp.content:
            return {}
        return resp.json()

    def _find(self, collection: str, name: str) -> dict | None:
        items = self.request("GET", f"/{collection}", params={"name": name})[collection]
        return items[0] if items else None

    def get_ssh_key(self, name: str) -> dict | None:
        return self._find("ssh_keys", name)

    def create_ssh_key(self, name: str, public_key: str) -> dict:
        body = {"name": name, "public_key": public_key}
        return self.request("POST", "/ssh_keys", json=body)["ssh_key"]

    def delete_ssh_key(self, key_id: int) -> None:
        self.request("DELETE", f"/ssh_keys/{key_id}")

    def get_firewall(self, name: str) -> dict | None:
        return self._find("firewalls", name)

    def create_firewall(self, name: str, rules: list[dict]) -> dict:
        body = {"name": name, "rules": rules}
        return self.request("POST", "/firewalls", json=body)["firewall"]

    def set_firewall_rules(self, firewall_id: int, rules: list[dict]) -> None:
        self.request(
            "POST", f"/firewalls/{firewall_id}/actions/set_rules", json={"rules": rules}
        )

    def detach_firewall(self, firewall_id: int, resources: list[dict]) -> None:
        self.request(
            "POST",
            f"/firewalls/{firewall_id}/actions/remove_from_resources",
            json={"remove_from": resources},
        )

    def delete_firewall(self, firewall_id: int) -> None:
        self.request("DELETE", f"/firewalls/{firewall_id}")

    def get_server_by_name(self, name: str) -> dict | None:
        return self._find("servers", name)

    def get_server(self, server_id: int) -> dict | None:
        try:
            return self.request("GET", f"/servers/{server_id}")["server"]
        except HetznerAPIError as e:
            if e.not_found:
                return None
            raise

    def create_server(
        self,
        name: str,
        *,
        location: str | None,
        ssh_key_id: int,
        firewall_id: int,
        server_type: str = SERVER_TYPE,
        image: str = SERVER_IMAGE,
    ) -> dict:
        body = {
            "name": name,
            "server_type": server_type,
            "image": image,
            "ssh_keys": [ssh_key_id],
            "firewalls": [{"firewall": firewall_id}],
            "public_net": {"enable_ipv4": True, "enable_ipv6": True},
        }
        if location:
            body["location"] = location
        return self.request("POST", "/servers", json=body)["server"]

    def delete_server(self, server_id: int) -> None:
        self.request("DELETE", f"/servers/{server_id}")

    def list_locations(self) -> list[dict]:
        return self.request("GET", "/locations")["locations"]


class HetznerProvisioner:
    """Provisions the gateway as a Hetzner Cloud server reached over SSH.

    Each provision generates a fresh ed25519 key, replaces the SSH key and
    firewall rules named by the id, and recreates the server.
    """

    provider_name: ProviderName = "hetzner"

    def __init__(
        self,
        settings: Settings,
        *,
        transport=None,
        executor_factory=SSHExecutor,
        key_factory=generate_ssh_key,
        poll_interval: float = POLL_INTERVAL,
        running_timeout: float = RUNNING_TIMEOUT,
        ready_timeout: float = READY_TIMEOUT,
        ready_interval: float = READY_INTERVAL,
        retry_attempts: int = RETRY_ATTEMPTS,
        retry_delay: float = RETRY_DELAY,
    ):
        self.settings = settings
        self.transport = transport
        self.executor_factory = executor_factory
        self.key_factory = key_factory
        self.poll_interval = poll_interval
        self.running_timeout = running_timeout
        self.ready_timeout = ready_timeout
        self.ready_interval = ready_interval
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    def _client(self) -> HetznerClient:
        if not self.settings.hcloud_token:
            raise ConfigurationError("HCLOUD_TOKEN not set")
        return HetznerClient(self.settings.hcloud_token, transport=self.transport)

    def _replace_ssh_key(self, client: HetznerClient, name: str, public_key: str) -> dict:
        existing = client.get_ssh_key(name)
        if existing:
            debug(f"Deleting old SSH key '{name}'")
            client.delete_ssh_key(existing["id"])
        log(f"Creating SSH key '{name}'")
        return client.create_ssh_key(name, public_key)

    def _ensure_firewall(self, client: HetznerClient, name: str, port: int) -> dict:
        rules = firewall_rules(port)
        firewall = client.get_firewall(name)
        if firewall:
            log(f"Replacing rules of firewall '{name}'")
            client.set_firewall_rules(firewall["id"], rules)
            return firewall
        log(f"Creating firewall '{name}'")
        return client.create_firewall(name, rules)

    def _wait_server_gone(self, client: HetznerClient, server_id: int, cancel: CancelToken) -> None:
        while client.get_server(server_id) is not None:
            debug(f"Waiting for server {server_id} to be deleted...")
            cancel.sleep(self.poll_interval)

    def _wait_running(self, client: HetznerClient, server_id: int, cancel: CancelToken) -> dict:
        deadline = time.monotonic() + self.running_timeout
        while True:
            server = client.get_server(server_id)
            status = server["status"] if server else "missing"
            if status == "running":
                return server
            if time.monotonic() >= deadline:
                raise ReadinessTimeout(
                    f"Server {server_id} not running after {self.running_timeout:.0f}s (status: {status})"
                )
            debug(f"Server {server_id} status: {status}")
            cancel.sleep(self.poll_interval)

    def provision(
        self, id: str, request: ProvisionRequest, cancel: CancelToken | None = None
    ) -> ProvisionResult:
        """Create the server named `id` and configure WireGuard on it over SSH.

        :param id: Name of the server, SSH key and firewall
        :param request: Gateway configuration; region is the Hetzner location
        :param cancel: Cancellation token (default: never cancelled)
        :return: Public IP and server key of the running gateway
        """
        cancel = cancel or CancelToken()
        with self._client() as client:
            key = self.key_factory()
            ssh_key = self._replace_ssh_key(client, id, key.public_key)
            firewall = self._ensure_firewall(client, id, request.port)

            existing = client.get_server_by_name(id)
            if existing:
                log(f"Server '{id}' exists, deleting before recreating...")
                client.delete_server(existing["id"])
                self._wait_server_gone(client, existing["id"], cancel)

            log(f"Creating server '{id}' ({SERVER_TYPE}, {request.region or 'default location'})...")
            server = client.create_server(
                id,
                location=request.region or None,
                ssh_key_id=ssh_key["id"],
                firewall_id=firewall["id"],
            )

            try:
                server = self._wait_running(client, server["id"], cancel)
                ip = server["public_net"]["ipv4"]["ip"]
                log(f"Server '{id}' running at {ip}")

                executor = self.executor_factory(key)
                wait_until_ready(
                    executor,
                    ip,
                    cancel,
                    timeout=self.ready_timeout,
                    interval=self.ready_interval,
                )
                outcome = run_init_script(
                    request, lambda script: executor.run(ip, script, cancel).stdout
                )
            except Exception:
                log(f"Cleaning up server '{id}'")
                try:
                    client.delete_server(server["id"])
                except (HetznerAPIError, httpx.HTTPError) as e:
                    logger.error(f"Failed to delete server '{id}': {e}")
                raise

        return ProvisionResult(
            ip=ip,
            server_address=request.server_address,
            server_public_key=outcome.server_public_key,
        )

    def deprovision(
        self, id: str, request: DeprovisionRequest, cancel: CancelToken | None = None
    ) -> None:
        """Delete the server, SSH key and firewall named `id`.

        Resources already gone count as deleted. Every task runs even if
        others fail.

        :raises TeardownError: Holding one exception per failed task
        """
        cancel = cancel or CancelToken()
        with self._client() as client:

            def _delete_server():
                server = client.get_server_by_name(id)
                if server is None:
                    log(f"Server '{id}' already deleted")
                    return
                client.delete_server(server["id"])
                self._wait_server_gone(client, server["id"], cancel)
                log(f"Server '{id}' deleted")

            def _delete_ssh_key():
                key = client.get_ssh_key(id)
                if key is None:
                    log(f"SSH key '{id}' already deleted")
                    return
                try:
                    client.delete_ssh_key(key["id"])
                except HetznerAPIError as e:
                    if not e.not_found:
                        raise
                log(f"SSH key '{id}' deleted")

            def _delete_firewall():
                firewall = client.get_firewall(id)
                if firewall is None:
                    log(f"Firewall '{id}' already deleted")
                    return
                applied = [
                    {"type": "server", "server": r["server"]}
                    for r in firewall.get("applied_to", [])
                    if r.get("type") == "server"
                ]
                if applied:
                    client.detach_firewall(firewall["id"], applied)
                try:
                    client.delete_firewall(firewall["id"])
                except HetznerAPIError as e:
                    if not e.not_found:
                        raise
                log(f"Firewall '{id}' deleted")

            tasks = [
                TeardownTask(f"server {id}", _delete_server),
                TeardownTask(f"ssh key {id}", _delete_ssh_key),
                TeardownTask(f"firewall {id}", _delete_firewall),
            ]
            errors = run_teardown(
                tasks, cancel, attempts=self.retry_attempts, delay=self.retry_delay
            )
        if errors:
            raise TeardownError(f"{len(errors)} of {len(tasks)} teardown tasks failed", errors)
        log(f"Deprovisioned '{id}'")

    def locations(self) -> list[Location]:
        with self._client() as client:
            return [
                Location(
                    key=loc["name"],
                    city=loc["city"],
                    country=loc["country"],
                    latitude=loc["latitude"],
                    longitude=loc["longitude"],
                )
                for loc in client.list_locations()
            ]

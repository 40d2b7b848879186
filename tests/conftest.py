"""Shared fixtures: stateful fakes of the AWS clients and the Hetzner API."""

import json
import re
from itertools import count

import httpx
import pytest
from botocore.exceptions import ClientError

ACCOUNT_ID = "123456789012"
REGION = "eu-central-1"


def pytest_addoption(parser):
    parser.addoption(
        "--provider",
        default="aws",
        help="Cloud provider for integration tests (default: aws)",
    )


@pytest.fixture(scope="session")
def provider_name(request):
    return request.config.getoption("--provider")


def client_error(code: str, message: str = "", operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def init_output(script: str, public_key: str = "SERVERKEY", noise: str = "...noise...\n") -> str:
    """Stdout the init script would print on a healthy host."""
    sentinel = re.search(r'printf "([0-9a-f]{64})"', script).group(1)
    return f'{noise}{sentinel}{{"ServerWgPublicKey":"{public_key}"}}'


class FakePaginator:
    def __init__(self, fn):
        self.fn = fn

    def paginate(self, **kwargs):
        yield self.fn(**kwargs)


class FakeCloudFormation:
    """CloudFormation that walks each stack through a scripted status sequence.

    A describe call reports the current status, then advances to the next one.
    """

    def __init__(self):
        self.stacks: dict[str, dict] = {}
        self.create_plans: dict[str, list[str]] = {}
        self.delete_plans: dict[str, list[str]] = {}
        self.outputs: dict[str, dict[str, str]] = {}
        self.events: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []

    def seed(self, name: str, status: str = "CREATE_COMPLETE", outputs: dict | None = None):
        self.stacks[name] = {"StackStatus": status, "plan": []}
        if outputs is not None:
            self.outputs[name] = outputs

    def count(self, op: str, name: str) -> int:
        return self.calls.count((op, name))

    def create_stack(self, StackName, TemplateBody, Capabilities, Parameters):
        self.calls.append(("create_stack", StackName))
        if StackName in self.stacks:
            raise client_error(
                "AlreadyExistsException", f"Stack [{StackName}] already exists", "CreateStack"
            )
        plan = list(self.create_plans.get(StackName, ["CREATE_IN_PROGRESS", "CREATE_COMPLETE"]))
        self.stacks[StackName] = {
            "StackStatus": plan.pop(0),
            "plan": plan,
            "TemplateBody": TemplateBody,
            "Parameters": Parameters,
            "Capabilities": Capabilities,
        }
        return {"StackId": f"arn:aws:cloudformation:{REGION}:{ACCOUNT_ID}:stack/{StackName}/1"}

    def describe_stacks(self, StackName):
        self.calls.append(("describe_stacks", StackName))
        stack = self.stacks.get(StackName)
        if stack is None:
            raise client_error(
                "ValidationError", f"Stack with id {StackName} does not exist", "DescribeStacks"
            )
        status = stack["StackStatus"]
        view = {"StackName": StackName, "StackStatus": status}
        if stack.get("StackStatusReason"):
            view["StackStatusReason"] = stack["StackStatusReason"]
        if status == "CREATE_COMPLETE":
            view["Outputs"] = [
                {"OutputKey": k, "OutputValue": v}
                for k, v in self.outputs.get(StackName, {}).items()
            ]
        if status == "DELETE_COMPLETE":
            del self.stacks[StackName]
        elif stack["plan"]:
            stack["StackStatus"] = stack["plan"].pop(0)
        return {"Stacks": [view]}

    def delete_stack(self, StackName):
        self.calls.append(("delete_stack", StackName))
        stack = self.stacks.get(StackName)
        if stack is not None:
            stack["plan"] = list(self.delete_plans.get(StackName, ["DELETE_COMPLETE"]))
            stack["StackStatus"] = "DELETE_IN_PROGRESS"
        return {}

    def get_paginator(self, operation):
        assert operation == "describe_stack_events"
        return FakePaginator(
            lambda StackName: {"StackEvents": list(self.events.get(StackName, []))}
        )


class FakeSTS:
    def __init__(self):
        self.assumed: list[tuple[str, str]] = []

    def get_caller_identity(self):
        return {"Account": ACCOUNT_ID, "Arn": f"arn:aws:iam::{ACCOUNT_ID}:user/test"}

    def assume_role(self, RoleArn, RoleSessionName):
        self.assumed.append((RoleArn, RoleSessionName))
        return {
            "Credentials": {
                "AccessKeyId": f"key-for:{RoleArn}",
                "SecretAccessKey": "secret",
                "SessionToken": "token",
            }
        }


class FakeS3:
    """Versioned buckets: deleting an object without a version adds a delete marker."""

    def __init__(self):
        self.buckets: dict[str, dict] = {}
        self.uploads: list[dict] = []
        self.fail_roles: set[str] = set()
        self._versions = count(1)

    def add_bucket(self, name: str, keys=()):
        self.buckets[name] = {"objects": set(), "versions": [], "markers": []}
        for key in keys:
            self._put(name, key)

    def _put(self, bucket: str, key: str):
        b = self.buckets[bucket]
        b["objects"].add(key)
        b["versions"].append((key, f"v{next(self._versions)}"))

    def _bucket(self, name: str) -> dict:
        if name not in self.buckets:
            raise client_error("NoSuchBucket", "The specified bucket does not exist")
        return self.buckets[name]

    def put_object(self, Bucket, Key, Body, role=None):
        if role in self.fail_roles:
            raise client_error("AccessDenied", "Access Denied", "PutObject")
        self.uploads.append({"Bucket": Bucket, "Key": Key, "Body": Body, "role": role})
        return {}

    def delete_object(self, Bucket, Key, VersionId=None):
        b = self._bucket(Bucket)
        if VersionId is None:
            b["objects"].discard(Key)
            b["markers"].append((Key, f"m{next(self._versions)}"))
        else:
            b["versions"] = [v for v in b["versions"] if v != (Key, VersionId)]
            b["markers"] = [m for m in b["markers"] if m != (Key, VersionId)]
        return {}

    def delete_bucket(self, Bucket):
        b = self._bucket(Bucket)
        if b["objects"] or b["versions"] or b["markers"]:
            raise client_error("BucketNotEmpty", "The bucket you tried to delete is not empty")
        del self.buckets[Bucket]

    def get_paginator(self, operation):
        def list_objects_v2(Bucket):
            b = self._bucket(Bucket)
            return {"Contents": [{"Key": k} for k in sorted(b["objects"])]}

        def list_object_versions(Bucket):
            b = self._bucket(Bucket)
            return {
                "Versions": [{"Key": k, "VersionId": v} for k, v in b["versions"]],
                "DeleteMarkers": [{"Key": k, "VersionId": v} for k, v in b["markers"]],
            }

        return FakePaginator({"list_objects_v2": list_objects_v2,
                              "list_object_versions": list_object_versions}[operation])


class _S3ForRole:
    """S3 client bound to the role whose credentials created it."""

    def __init__(self, s3: FakeS3, role: str | None):
        self._s3 = s3
        self._role = role

    def put_object(self, **kwargs):
        return self._s3.put_object(role=self._role, **kwargs)

    def __getattr__(self, name):
        return getattr(self._s3, name)


class FakeSSM:
    """SSM whose command results come from `responder(script)`.

    The responder returns the list of invocation states reported by
    successive get_command_invocation calls.
    """

    def __init__(self, responder=None):
        self.responder = responder or self.healthy_host
        self.commands: dict[str, dict] = {}
        self.scripts: list[str] = []
        self.cancelled: list[str] = []
        self._ids = count(1)

    @staticmethod
    def healthy_host(script: str) -> list[dict]:
        if script == "printf 1":
            stdout = "1"
        else:
            stdout = init_output(script)
        return [
            {"Status": "InProgress"},
            {"Status": "Success", "ResponseCode": 0, "StandardOutputContent": stdout,
             "StandardErrorContent": ""},
        ]

    def send_command(self, InstanceIds, DocumentName, Parameters):
        assert DocumentName == "AWS-RunShellScript"
        script = Parameters["commands"][0]
        self.scripts.append(script)
        command_id = f"cmd-{next(self._ids)}"
        self.commands[command_id] = {"states": list(self.responder(script))}
        return {"Command": {"CommandId": command_id}}

    def get_command_invocation(self, CommandId, InstanceId):
        states = self.commands[CommandId]["states"]
        state = states.pop(0) if len(states) > 1 else states[0]
        if isinstance(state, Exception):
            raise state
        return {"StandardOutputContent": "", "StandardErrorContent": "", "ResponseCode": -1, **state}

    def cancel_command(self, CommandId, InstanceIds):
        self.cancelled.append(CommandId)


class FakeSession:
    def __init__(self, aws: "FakeAWS", kwargs: dict):
        self.aws = aws
        self.kwargs = kwargs

    def client(self, name: str):
        if name == "s3":
            return _S3ForRole(self.aws.s3, self.kwargs.get("aws_access_key_id"))
        return getattr(self.aws, name)


class FakeAWS:
    """One fake account; `session` is passed as the boto3 session factory."""

    def __init__(self):
        self.cloudformation = FakeCloudFormation()
        self.sts = FakeSTS()
        self.s3 = FakeS3()
        self.ssm = FakeSSM()
        self.sessions: list[dict] = []

    def session(self, **kwargs) -> FakeSession:
        self.sessions.append(kwargs)
        return FakeSession(self, kwargs)


@pytest.fixture
def fake_aws(monkeypatch):
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    return FakeAWS()


class FakeHetzner:
    """In-memory Hetzner Cloud API served through httpx.MockTransport."""

    def __init__(self):
        self.ssh_keys: dict[int, dict] = {}
        self.firewalls: dict[int, dict] = {}
        self.servers: dict[int, dict] = {}
        self.requests: list[tuple[str, str]] = []
        self.fail: dict[tuple[str, str], int] = {}
        self._ids = count(1)
        self.locations = [
            {"name": "fsn1", "city": "Falkenstein", "country": "DE",
             "latitude": 50.47612, "longitude": 12.370071},
            {"name": "hel1", "city": "Helsinki", "country": "FI",
             "latitude": 60.169855, "longitude": 24.938379},
        ]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def seed_server(self, name: str, status: str = "running") -> dict:
        server = self._new_server({"name": name}, status)
        return server

    def _new_server(self, body: dict, status: str) -> dict:
        server_id = next(self._ids)
        server = {
            "id": server_id,
            "name": body["name"],
            "status": status,
            "public_net": {"ipv4": {"ip": f"203.0.113.{server_id}"}},
            "location": body.get("location"),
            "ssh_keys": body.get("ssh_keys", []),
            "firewalls": body.get("firewalls", []),
            "deleting": False,
        }
        self.servers[server_id] = server
        return server

    @staticmethod
    def _error(status: int, code: str, message: str) -> httpx.Response:
        return httpx.Response(status, json={"error": {"code": code, "message": message}})

    @staticmethod
    def _by_name(items: dict, name: str | None) -> list[dict]:
        return [i for i in items.values() if name is None or i["name"] == name]

    def handle(self, request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer test-token"
        method = request.method
        path = request.url.path.removeprefix("/v1")
        self.requests.append((method, path))
        if (method, path) in self.fail:
            return self._error(self.fail[(method, path)], "server_error", "boom")

        body = json.loads(request.content) if request.content else {}
        name = request.url.params.get("name")
        parts = path.strip("/").split("/")

        if parts[0] == "locations":
            return httpx.Response(200, json={"locations": self.locations})

        if parts[0] == "ssh_keys":
            if method == "GET":
                return httpx.Response(200, json={"ssh_keys": self._by_name(self.ssh_keys, name)})
            if method == "POST":
                key = {"id": next(self._ids), "name": body["name"], "public_key": body["public_key"]}
                self.ssh_keys[key["id"]] = key
                return httpx.Response(201, json={"ssh_key": key})
            if method == "DELETE":
                if self.ssh_keys.pop(int(parts[1]), None) is None:
                    return self._error(404, "not_found", "ssh key not found")
                return httpx.Response(204)

        if parts[0] == "firewalls":
            if method == "GET":
                return httpx.Response(200, json={"firewalls": self._by_name(self.firewalls, name)})
            if method == "POST" and len(parts) == 1:
                fw = {"id": next(self._ids), "name": body["name"], "rules": body["rules"],
                      "applied_to": []}
                self.firewalls[fw["id"]] = fw
                return httpx.Response(201, json={"firewall": fw, "actions": []})
            fw = self.firewalls.get(int(parts[1]))
            if fw is None:
                return self._error(404, "not_found", "firewall not found")
            if method == "POST" and parts[-1] == "set_rules":
                fw["rules"] = body["rules"]
                return httpx.Response(201, json={"actions": []})
            if method == "POST" and parts[-1] == "remove_from_resources":
                fw["applied_to"] = []
                return httpx.Response(201, json={"actions": []})
            if method == "DELETE":
                if fw["applied_to"]:
                    return self._error(422, "resource_in_use", "firewall still applied")
                del self.firewalls[fw["id"]]
                return httpx.Response(204)

        if parts[0] == "servers":
            if method == "GET" and len(parts) == 1:
                live = [s for s in self._by_name(self.servers, name) if not s["deleting"]]
                return httpx.Response(200, json={"servers": live})
            if method == "POST":
                server = self._new_server(body, "initializing")
                for ref in body.get("firewalls", []):
                    self.firewalls[ref["firewall"]]["applied_to"].append(
                        {"type": "server", "server": {"id": server["id"]}}
                    )
                return httpx.Response(201, json={"server": server, "action": {}})
            server = self.servers.get(int(parts[1]))
            if server is None:
                return self._error(404, "not_found", "server not found")
            if method == "GET":
                if server["deleting"]:
                    del self.servers[server["id"]]
                    return self._error(404, "not_found", "server not found")
                view = dict(server)
                server["status"] = "running"
                return httpx.Response(200, json={"server": view})
            if method == "DELETE":
                server["deleting"] = True
                return httpx.Response(200, json={"action": {"command": "delete_server"}})

        return self._error(404, "not_found", f"no route for {method} {path}")


@pytest.fixture
def fake_hetzner():
    return FakeHetzner()

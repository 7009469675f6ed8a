import argparse
import json

import pytest
from botocore.exceptions import ClientError, WaiterError

from deploy_cli import stack_commands
from deploy_cli.cli_shared import GlobalOpts, OpError, UsageError
from deploy_cli.stack_commands import (
    ApplicationStackConfig,
    application_stack_parameters,
    cmd_application_deploy,
    deploy_stack,
    template_url,
    upload_templates,
)


def _g(stack: str = "aws101-application-parent") -> GlobalOpts:
    return GlobalOpts(stack=stack, pretty=False, quiet=True)


class _FakeS3:
    def __init__(self):
        self.puts = []

    def put_object(self, *, Bucket, Key, Body):
        self.puts.append((Bucket, Key, Body))
        return {}


class _FakeWaiter:
    def __init__(self, name, calls, error=None):
        self._name = name
        self._calls = calls
        self._error = error

    def wait(self, **kwargs):
        self._calls.append(("wait", self._name, kwargs))
        if self._error is not None:
            raise self._error


class _FakeCloudFormation:
    def __init__(self, *, update_error=None, waiter_error=None):
        self.calls = []
        self._update_error = update_error
        self._waiter_error = waiter_error

    def create_stack(self, **kwargs):
        self.calls.append(("create_stack", kwargs))
        return {"StackId": "stack-1"}

    def update_stack(self, **kwargs):
        self.calls.append(("update_stack", kwargs))
        if self._update_error is not None:
            raise self._update_error
        return {"StackId": "stack-1"}

    def get_waiter(self, name):
        return _FakeWaiter(name, self.calls, self._waiter_error)


class _FakeSession:
    def __init__(self, s3, cf):
        self._clients = {"s3": s3, "cloudformation": cf}

    def client(self, name):
        return self._clients[name]


def _validation_error(message: str) -> ClientError:
    return ClientError({"Error": {"Code": "ValidationError", "Message": message}}, "UpdateStack")


def _templates_dir(tmp_path):
    root = tmp_path / "application"
    (root / "nested").mkdir(parents=True)
    (root / "application.yml").write_text("Resources: {}\n", encoding="utf-8")
    (root / "network.yml").write_text("Resources: {}\n", encoding="utf-8")
    (root / "service.yml").write_text("Resources: {}\n", encoding="utf-8")
    (root / "nested" / "extra.yml").write_text("Resources: {}\n", encoding="utf-8")
    return root


def _deploy_args(templates_dir, **overrides) -> argparse.Namespace:
    base = dict(
        mode="update",
        image_url="111122223333.dkr.ecr.eu-central-1.amazonaws.com/todo-app:42",
        user_pool_client_secret="client-secret",
        bucket=None,
        prefix=None,
        templates_dir=str(templates_dir),
        parent_template=None,
        registry_stack_name=None,
        capabilities=None,
        dry_run=False,
    )
    base.update(overrides)
    return argparse.Namespace(**base)


def test_template_url():
    assert (
        template_url("aws101.dev", "stacks/application", "network.yml")
        == "https://s3.amazonaws.com/aws101.dev/stacks/application/network.yml"
    )
    assert template_url("bucket", "/", "service.yml") == "https://s3.amazonaws.com/bucket/service.yml"


def test_application_stack_parameters():
    params = application_stack_parameters(
        ApplicationStackConfig(),
        image_url="repo/todo-app:42",
        user_pool_client_secret="client-secret",
    )

    assert {p["ParameterKey"]: p["ParameterValue"] for p in params} == {
        "NetworkStackTemplateUrl": "https://s3.amazonaws.com/aws101.dev/stacks/application/network.yml",
        "ServiceStackTemplateUrl": "https://s3.amazonaws.com/aws101.dev/stacks/application/service.yml",
        "ServiceStackImageUrl": "repo/todo-app:42",
        "ServiceStackUserPoolClientSecret": "client-secret",
        "RegistryStackName": "aws101-container-registry",
    }


def test_upload_templates_is_recursive(tmp_path):
    s3 = _FakeS3()
    keys = upload_templates(
        s3,
        templates_dir=_templates_dir(tmp_path),
        bucket="aws101.dev",
        prefix="stacks/application/",
    )

    assert keys == [
        "stacks/application/application.yml",
        "stacks/application/nested/extra.yml",
        "stacks/application/network.yml",
        "stacks/application/service.yml",
    ]
    assert [k for _b, k, _body in s3.puts] == keys
    assert {b for b, _k, _body in s3.puts} == {"aws101.dev"}


def test_upload_templates_dry_run_does_not_upload(tmp_path):
    s3 = _FakeS3()
    keys = upload_templates(
        s3,
        templates_dir=_templates_dir(tmp_path),
        bucket="aws101.dev",
        prefix="stacks/application",
        dry_run=True,
    )

    assert len(keys) == 4
    assert s3.puts == []


def test_upload_templates_requires_directory(tmp_path):
    with pytest.raises(UsageError, match="templates directory not found"):
        upload_templates(_FakeS3(), templates_dir=tmp_path / "missing", bucket="b", prefix="p")


def test_deploy_stack_update_waits_for_update_complete():
    cf = _FakeCloudFormation()
    result = deploy_stack(
        cf,
        stack_name="parent",
        template_body="Resources: {}",
        parameters=[{"ParameterKey": "A", "ParameterValue": "1"}],
        mode="update",
    )

    assert result == {"stackName": "parent", "mode": "update", "changed": True}
    assert cf.calls[0][0] == "update_stack"
    assert "Capabilities" not in cf.calls[0][1]
    assert cf.calls[1] == ("wait", "stack_update_complete", {"StackName": "parent"})


def test_deploy_stack_create_passes_capabilities():
    cf = _FakeCloudFormation()
    deploy_stack(
        cf,
        stack_name="parent",
        template_body="Resources: {}",
        parameters=[],
        mode="create",
        capabilities=["CAPABILITY_IAM"],
    )

    assert cf.calls[0] == (
        "create_stack",
        {
            "StackName": "parent",
            "TemplateBody": "Resources: {}",
            "Parameters": [],
            "Capabilities": ["CAPABILITY_IAM"],
        },
    )
    assert cf.calls[1][1] == "stack_create_complete"


def test_deploy_stack_update_without_changes_is_not_an_error():
    cf = _FakeCloudFormation(update_error=_validation_error("No updates are to be performed."))
    result = deploy_stack(cf, stack_name="parent", template_body="", parameters=[], mode="update")

    assert result["changed"] is False
    assert [c[0] for c in cf.calls] == ["update_stack"]


def test_deploy_stack_other_api_errors_propagate():
    cf = _FakeCloudFormation(update_error=_validation_error("Stack [parent] does not exist"))

    with pytest.raises(OpError, match="update-stack failed for stack 'parent'"):
        deploy_stack(cf, stack_name="parent", template_body="", parameters=[], mode="update")


def test_deploy_stack_waiter_failure_is_reported():
    cf = _FakeCloudFormation(
        waiter_error=WaiterError(
            name="StackUpdateComplete",
            reason="Waiter encountered a terminal failure state",
            last_response={},
        )
    )

    with pytest.raises(OpError, match="did not reach UPDATE_COMPLETE"):
        deploy_stack(cf, stack_name="parent", template_body="", parameters=[], mode="update")


def test_deploy_stack_rejects_unknown_mode():
    with pytest.raises(UsageError, match="invalid deploy mode"):
        deploy_stack(_FakeCloudFormation(), stack_name="p", template_body="", parameters=[], mode="delete")


@pytest.mark.parametrize("field", ["image_url", "user_pool_client_secret"])
def test_cmd_application_deploy_validates_arguments_before_remote_calls(tmp_path, monkeypatch, field):
    sessions = []
    monkeypatch.setattr(stack_commands, "_account_session", lambda: sessions.append(1))

    with pytest.raises(UsageError, match="missing"):
        cmd_application_deploy(_deploy_args(_templates_dir(tmp_path), **{field: "  "}), _g())
    assert sessions == []


def test_cmd_application_deploy_requires_parent_template(tmp_path, monkeypatch):
    monkeypatch.setattr(stack_commands, "_account_session", lambda: pytest.fail("no session expected"))

    with pytest.raises(UsageError, match="parent template not found"):
        cmd_application_deploy(
            _deploy_args(_templates_dir(tmp_path), parent_template="missing.yml"),
            _g(),
        )


def test_cmd_application_deploy_uploads_and_updates(tmp_path, monkeypatch, capsys):
    s3 = _FakeS3()
    cf = _FakeCloudFormation()
    monkeypatch.setattr(stack_commands, "_account_session", lambda: _FakeSession(s3, cf))

    rc = cmd_application_deploy(_deploy_args(_templates_dir(tmp_path), bucket="my-bucket"), _g())

    assert rc == 0
    assert len(s3.puts) == 4
    update = cf.calls[0][1]
    assert update["StackName"] == "aws101-application-parent"
    assert update["TemplateBody"] == "Resources: {}\n"
    params = {p["ParameterKey"]: p["ParameterValue"] for p in update["Parameters"]}
    assert params["NetworkStackTemplateUrl"] == "https://s3.amazonaws.com/my-bucket/stacks/application/network.yml"
    assert params["ServiceStackUserPoolClientSecret"] == "client-secret"

    out = json.loads(capsys.readouterr().out)
    assert out["changed"] is True
    assert out["bucket"] == "my-bucket"
    assert out["dryRun"] is False
    assert "client-secret" not in json.dumps(out)

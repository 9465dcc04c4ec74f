"""Tests for the CD4PE API client retry/dispatch behaviour."""

from __future__ import annotations

import http.client
import json

import pytest

from cd4pe_runner.agent.api_client import MAX_ATTEMPTS, RETRY_DELAY_SECONDS, APIClient, UrllibTransport
from cd4pe_runner.agent.models import ResponseClass
from cd4pe_runner.errors import APIConnectionError, InvalidVerbError, ServerExhaustedError
from cd4pe_runner.ui.console import Console, set_console

from conftest import FakeTransport, unreachable


class TestRetryPolicy:
    @pytest.mark.parametrize("failures", [1, 2])
    def test_success_after_server_errors(self, config, sleeps, failures):
        transport = FakeTransport([(500, b"boom")] * failures + [(200, b"{}")])
        response = APIClient(config, transport).send("GET", "/acme/ajax?op=X")
        assert response.status_code == 200
        assert len(transport.calls) == failures + 1
        assert sleeps == [RETRY_DELAY_SECONDS] * failures

    @pytest.mark.parametrize("failures", [3, 4, 10])
    def test_exhausted_after_three_attempts(self, config, sleeps, failures):
        transport = FakeTransport([(503, b"unavailable")] * failures)
        with pytest.raises(ServerExhaustedError) as excinfo:
            APIClient(config, transport).send("POST", "/acme/ajax", {"op": "X"})
        assert len(transport.calls) == MAX_ATTEMPTS == 3
        assert sleeps == [3, 3]
        err = excinfo.value
        assert err.attempts == 3
        assert err.status_code == 503
        assert err.body == "unavailable"
        assert "http://cd4pe.example.com:8080" in str(err)

    def test_first_attempt_success_does_not_sleep(self, config, sleeps):
        transport = FakeTransport([(200, b"ok")])
        APIClient(config, transport).send("GET", "/acme/ajax")
        assert len(transport.calls) == 1
        assert sleeps == []

    def test_unreachable_is_not_retried(self, config, sleeps):
        transport = FakeTransport([unreachable(), (200, b"never")])
        with pytest.raises(APIConnectionError) as excinfo:
            APIClient(config, transport).send("GET", "/acme/ajax")
        assert len(transport.calls) == 1
        assert sleeps == []
        assert "cd4pe.example.com:8080" in str(excinfo.value)

    def test_unreachable_after_server_error(self, config, sleeps):
        transport = FakeTransport([(500, b""), unreachable()])
        with pytest.raises(APIConnectionError):
            APIClient(config, transport).send("GET", "/acme/ajax")
        assert len(transport.calls) == 2

    @pytest.mark.parametrize(
        "status, expected",
        [
            (201, ResponseClass.SUCCESS),
            (302, ResponseClass.REDIRECTION),
            (404, ResponseClass.CLIENT_ERROR),
            (422, ResponseClass.CLIENT_ERROR),
        ],
    )
    def test_non_server_errors_return_immediately(self, config, sleeps, status, expected):
        transport = FakeTransport([(status, b"body")])
        response = APIClient(config, transport).send("GET", "/acme/ajax")
        assert response.classification is expected
        assert response.text == "body"
        assert len(transport.calls) == 1


class TestRequestShape:
    def test_headers_and_url(self, config):
        transport = FakeTransport([(200, b"")])
        APIClient(config, transport).send("post", "/acme/ajax", {"op": "DeployCode", "content": {}})
        call = transport.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == "http://cd4pe.example.com:8080/acme/ajax"
        assert call["headers"] == {
            "Content-Type": "application/json",
            "Authorization": "Bearer token s3cret",
        }
        assert json.loads(call["body"]) == {"op": "DeployCode", "content": {}}

    def test_get_and_delete_have_no_body(self, config):
        transport = FakeTransport([(200, b""), (200, b"")])
        client = APIClient(config, transport)
        client.send("GET", "/acme/ajax?op=X")
        client.send("DELETE", "/acme/ajax")
        assert [c["body"] for c in transport.calls] == [None, None]

    def test_invalid_verb(self, config):
        transport = FakeTransport([])
        with pytest.raises(InvalidVerbError):
            APIClient(config, transport).send("PATCH", "/acme/ajax")
        assert transport.calls == []

    def test_logs_each_attempt(self, config, sleeps, capsys):
        set_console(Console(debug=True))
        try:
            transport = FakeTransport([(500, b""), (200, b"")])
            APIClient(config, transport).send("GET", "/acme/ajax?op=X")
        finally:
            set_console(Console())
        err = capsys.readouterr().err
        assert err.count("cd4pe_client: requesting GET /acme/ajax?op=X") == 2
        assert "Attempt 1 of 3" in err


class TestNamedOperations:
    def test_pin_nodes_to_env(self, config):
        transport = FakeTransport([(200, b"")])
        APIClient(config, transport).pin_nodes_to_env(["n1", "n2"], "ng-9")
        body = json.loads(transport.calls[0]["body"])
        assert body == {
            "op": "PinNodesToGroup",
            "content": {"deploymentId": "dep-42", "nodeGroupId": "ng-9", "nodes": ["n1", "n2"]},
        }

    def test_get_node_group_is_a_query(self, config):
        transport = FakeTransport([(200, b"{\"id\": \"ng-9\"}")])
        response = APIClient(config, transport).get_node_group("ng-9")
        call = transport.calls[0]
        assert call["method"] == "GET"
        assert call["url"] == (
            "http://cd4pe.example.com:8080/acme/ajax?op=GetNodeGroupInfo&deploymentId=dep-42&nodeGroupId=ng-9"
        )
        assert response.json() == {"id": "ng-9"}

    def test_get_approval_state(self, config):
        transport = FakeTransport([(200, b"")])
        APIClient(config, transport).get_approval_state()
        assert transport.calls[0]["url"].endswith("?op=GetDeploymentApprovalState&deploymentId=dep-42")

    @pytest.mark.parametrize(
        "method_name, args, op, content",
        [
            ("delete_node_group", ("ng-9",), "DeleteNodeGroup", {"nodeGroupId": "ng-9"}),
            ("deploy_code", ("production",), "DeployCode", {"environmentName": "production"}),
            (
                "deploy_code",
                ("production", "hotfix"),
                "DeployCode",
                {"environmentName": "production", "defaultBranchOverride": "hotfix"},
            ),
            (
                "run_puppet",
                ("production", ["n1"], 5, True),
                "RunPuppet",
                {"environmentName": "production", "nodes": ["n1"], "withNoop": True, "concurrency": 5},
            ),
            ("get_puppet_run_status", ("job-1",), "GetPuppetRunStatus", {"jobId": "job-1"}),
            (
                "create_temp_node_group",
                ("parent", "feature", False),
                "CreateTempNodeGroup",
                {"parentNodeGroupId": "parent", "environmentName": "feature", "isEnvironmentNodeGroup": False},
            ),
            ("delete_git_branch", ("feature",), "DeleteGitBranch", {"branchName": "feature"}),
            (
                "update_git_branch_ref",
                ("feature", "deadbeef"),
                "UpdateGitRef",
                {"branchName": "feature", "commitSha": "deadbeef"},
            ),
        ],
    )
    def test_post_operations(self, config, method_name, args, op, content):
        transport = FakeTransport([(200, b"")])
        getattr(APIClient(config, transport), method_name)(*args)
        call = transport.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == "http://cd4pe.example.com:8080/acme/ajax"
        assert json.loads(call["body"]) == {"op": op, "content": {"deploymentId": "dep-42", **content}}

    def test_job_bundle_written_to_file(self, config, tmp_path):
        transport = FakeTransport([(200, b"\x1f\x8barchive")])
        target = tmp_path / "cd4pe_job.tar.gz"
        response = APIClient(config, transport).get_job_script_and_control_repo(target)
        assert response.ok
        assert target.read_bytes() == b"\x1f\x8barchive"
        assert transport.calls[0]["url"].endswith("?op=GetJobScriptAndControlRepo&jobInstanceId=dep-42")

    def test_job_bundle_not_written_on_404(self, config, tmp_path):
        transport = FakeTransport([(404, b"no such job")])
        target = tmp_path / "cd4pe_job.tar.gz"
        response = APIClient(config, transport).get_job_script_and_control_repo(target)
        assert response.classification is ResponseClass.CLIENT_ERROR
        assert not target.exists()

    def test_run_puppet_keeps_zero_concurrency(self, config):
        transport = FakeTransport([(200, b"")])
        APIClient(config, transport).run_puppet("production", ["n1"], 0)
        content = json.loads(transport.calls[0]["body"])["content"]
        assert content["concurrency"] == 0


class TestUrllibTransport:
    class _TruncatingOpener:
        def open(self, req, timeout=None):
            raise http.client.IncompleteRead(b"partial", 100)

    def test_broken_response_is_a_connection_error(self):
        transport = UrllibTransport()
        transport._opener = self._TruncatingOpener()
        with pytest.raises(ConnectionError):
            transport.send("GET", "http://cd4pe.example.com:8080/acme/ajax", None, {})

    def test_broken_response_is_not_retried(self, config, sleeps):
        transport = UrllibTransport()
        transport._opener = self._TruncatingOpener()
        with pytest.raises(APIConnectionError) as excinfo:
            APIClient(config, transport).send("GET", "/acme/ajax")
        assert "IncompleteRead" in str(excinfo.value)
        assert sleeps == []

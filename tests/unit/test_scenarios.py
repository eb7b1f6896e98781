"""End-to-end validation scenarios against the fake cluster."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from lula.core.resolver import ValidationResolver
from lula.core.runner import run_validation

POD_LABELS_VALIDATION = """
lula-version: ">= v0.1.0"
metadata:
  name: Validate pods with label foo=bar
  uuid: 6c00ae8d-7187-42ab-8d89-f383447a0824
domain:
  type: kubernetes
  kubernetes-spec:
    resources:
      - name: podsvt
        resource-rule:
          version: v1
          resource: pods
          namespaces: [validation-test]
provider:
  type: opa
  opa-spec:
    rego: |
      package validate

      validate := [ok | pod := input.podsvt[_]; ok := pod.metadata.labels.foo == "bar"]
"""


class FakeOpaProcess:
    """Answers ``opa eval --format json`` with the per-pod label decision.

    No Rego is executed: the decision the policy above expresses is computed
    here, and everything around it (policy file, stdin input, JSON output
    parsing) goes through the real engine.
    """

    def __init__(self, argv: tuple):
        self.argv = argv
        self.returncode = 0

    async def communicate(self, stdin: bytes) -> tuple[bytes, bytes]:
        policy = Path(self.argv[self.argv.index("--data") + 1]).read_text(encoding="utf-8")
        assert policy.startswith("package validate")

        pods = json.loads(stdin)["podsvt"]
        checks = [(pod["metadata"].get("labels") or {}).get("foo") == "bar" for pod in pods]
        payload = {"result": [{"expressions": [{"value": {"validate": {"validate": checks}}, "text": "data"}]}]}
        return json.dumps(payload).encode("utf-8"), b""

    def kill(self) -> None:
        pass

    async def wait(self) -> int:
        return self.returncode


@pytest.fixture
def fake_opa(monkeypatch) -> list[FakeOpaProcess]:
    processes: list[FakeOpaProcess] = []

    async def create_subprocess_exec(*argv, **kwargs):
        process = FakeOpaProcess(argv)
        processes.append(process)
        return process

    monkeypatch.setattr("lula.providers.opa.shutil.which", lambda name: f"/usr/local/bin/{name}")
    monkeypatch.setattr("lula.providers.opa.asyncio.create_subprocess_exec", create_subprocess_exec)
    return processes


@pytest.mark.asyncio
async def test_one_of_two_pods_labelled(fake_cluster, fake_opa):
    fake_cluster.add_pod("demo-1", labels={"foo": "bar"})
    fake_cluster.add_pod("demo-2", labels={"foo": "baz"})
    fake_cluster.add_pod("elsewhere", namespace="other", labels={"foo": "baz"})

    resolver = ValidationResolver(back_matter={
        "labels": {"uuid": "labels", "description": POD_LABELS_VALIDATION},
    }, cluster=fake_cluster, version="0.9.0")
    validation = await resolver.resolve("#labels")

    run = await run_validation(validation)
    assert run.error is None
    assert (run.result.passing, run.result.failing) == (1, 1)
    assert fake_opa[0].argv[1:3] == ("eval", "--format")


@pytest.mark.asyncio
async def test_evaluation_is_repeatable(fake_cluster, fake_opa):
    fake_cluster.add_pod("demo-1", labels={"foo": "bar"})
    resolver = ValidationResolver(back_matter={
        "labels": {"uuid": "labels", "description": POD_LABELS_VALIDATION},
    }, cluster=fake_cluster)
    validation = await resolver.resolve("#labels")

    first = await run_validation(validation)
    second = await run_validation(validation)
    assert first.result == second.result
    assert first.result.passing == 1
    assert len(fake_opa) == 2


@pytest.mark.asyncio
async def test_kyverno_filter_keeps_one_observation(fake_cluster):
    fake_cluster.add_pod("demo-1", labels={})
    document = yaml.safe_load(POD_LABELS_VALIDATION)
    document["provider"] = {
        "type": "kyverno",
        "kyverno-spec": {
            "policy": {
                "metadata": {"name": "labels"},
                "spec": {"rules": [
                    {"name": "foo-label-exists", "assert": {"all": [
                        {"check": {"~.podsvt": {"metadata": {"labels": {"foo": "bar"}}}}},
                    ]}},
                    {"name": "bar-label-exists", "assert": {"all": [
                        {"check": {"~.podsvt": {"metadata": {"labels": {"bar": "baz"}}}}},
                    ]}},
                ]},
            },
            "output": {
                "validation": "labels.foo-label-exists",
                "observations": ["labels.foo-label-exists"],
            },
        },
    }
    resolver = ValidationResolver(back_matter={
        "labels": {"uuid": "labels", "description": yaml.safe_dump(document)},
    }, cluster=fake_cluster)

    run = await run_validation(await resolver.resolve("#labels"))
    assert (run.result.passing, run.result.failing) == (0, 1)
    assert list(run.result.observations) == ["labels,foo-label-exists-0,0"]

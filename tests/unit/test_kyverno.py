"""Tests for providers/kyverno.py and the assertion-tree engine behind it."""

from __future__ import annotations

import pytest

from lula.core.errors import EvaluationError, SpecValidationError
from lula.models.validation import KyvernoOutput, KyvernoSpec
from lula.providers import assertions
from lula.providers.kyverno import KyvernoProvider, parse_rule_filter

POLICY_YAML = """
apiVersion: json.kyverno.io/v1alpha1
kind: ValidatingPolicy
metadata:
  name: labels
spec:
  rules:
  - name: foo-label-exists
    assert:
      all:
      - check:
          ~.podsvt:
            metadata:
              labels:
                foo: bar
  - name: bar-label-exists
    assert:
      all:
      - check:
          ~.podsvt:
            metadata:
              labels:
                bar: baz
"""


def pod(name: str, **labels: str) -> dict:
    return {"metadata": {"name": name, "namespace": "validation-test", "labels": labels}}


def policy(*rules: dict, name: str = "test") -> dict:
    return {"metadata": {"name": name}, "spec": {"rules": list(rules)}}


def check(tree: dict, message: str = "") -> dict:
    entry = {"check": tree}
    if message:
        entry["message"] = message
    return entry


class TestAssertTree:
    def test_field_equality(self):
        assert assertions.assert_tree({"a": {"b": 1}}, {"a": {"b": 1, "c": 2}}) == []

    def test_mismatch_reports_path(self):
        failures = assertions.assert_tree({"a": {"b": 1}}, {"a": {"b": 2}})
        assert failures == ["a.b: Invalid value: 2: Expected value: 1"]

    def test_foreach_over_array(self):
        resource = {"podsvt": [pod("one", foo="bar"), pod("two", foo="qux")]}
        failures = assertions.assert_tree(
            {"~.podsvt": {"metadata": {"labels": {"foo": "bar"}}}}, resource
        )
        assert failures == ["podsvt[1].metadata.labels.foo: Invalid value: 'qux': Expected value: 'bar'"]

    def test_foreach_over_map_values(self):
        resource = {"byname": {"one": {"ok": True}, "two": {"ok": True}}}
        assert assertions.assert_tree({"~items.byname": {"ok": True}}, resource) == []

    def test_foreach_requires_array(self):
        with pytest.raises(assertions.TreeError, match="foreach requires an array"):
            assertions.assert_tree({"~.env": {"a": 1}}, {"env": "prod"})

    def test_projection_key(self):
        resource = {"podsvt": [pod("one"), pod("two")]}
        assert assertions.assert_tree({"(length(podsvt))": 2}, resource) == []
        assert assertions.assert_tree({"(length(podsvt))": 3}, resource)

    def test_expression_value_uses_parent(self):
        resource = {"status": {"ready": 3, "desired": 3}}
        assert assertions.assert_tree({"status": {"ready": "(desired)"}}, resource) == []

    def test_wildcard_string(self):
        assert assertions.assert_tree({"name": "demo-*"}, {"name": "demo-pod"}) == []
        assert assertions.assert_tree({"name": "demo-?"}, {"name": "demo-pod"})

    def test_booleans_are_strict(self):
        assert assertions.assert_tree({"enabled": True}, {"enabled": 1})
        assert assertions.assert_tree({"count": 1}, {"count": True})

    def test_missing_field(self):
        failures = assertions.assert_tree({"a": "x"}, {})
        assert failures == ["a: Invalid value: None: Expected value: 'x'"]

    def test_bad_expression(self):
        with pytest.raises(assertions.TreeError, match="failed to evaluate"):
            assertions.assert_tree({"(foo[)": 1}, {})


class TestParsePolicies:
    def test_yaml_text(self):
        policies = assertions.parse_policies(POLICY_YAML)
        assert [p.name for p in policies] == ["labels"]
        assert [r.name for r in policies[0].rules] == ["foo-label-exists", "bar-label-exists"]

    def test_multi_document_yaml(self):
        text = POLICY_YAML + "---\nmetadata:\n  name: other\nspec:\n  rules: []\n"
        assert [p.name for p in assertions.parse_policies(text)] == ["labels", "other"]

    def test_list_of_mappings(self):
        policies = assertions.parse_policies([policy(name="a"), policy(name="b")])
        assert [p.name for p in policies] == ["a", "b"]

    @pytest.mark.parametrize(
        "raw,match",
        [
            ({"spec": {"rules": []}}, "metadata.name"),
            ({"metadata": {"name": "p"}}, "spec.rules"),
            (policy({"assert": {}}), "requires a name"),
            (policy({"name": "r"}), "requires assert"),
            ("", "no policies"),
            ("key: [unclosed", "failed to parse policy"),
            (42, "expected a mapping"),
        ],
    )
    def test_invalid(self, raw, match):
        with pytest.raises(EvaluationError, match=match):
            assertions.parse_policies(raw)


class TestRun:
    def test_any_passes_when_one_check_passes(self):
        rule = {"name": "either", "assert": {"any": [check({"a": 1}), check({"b": 2})]}}
        [response] = assertions.run(assertions.parse_policies(policy(rule)), {"a": 0, "b": 2})
        assert response.rules[0].violations == []

    def test_any_fails_with_every_check(self):
        rule = {"name": "either", "assert": {"any": [check({"a": 1}), check({"b": 2})]}}
        [response] = assertions.run(assertions.parse_policies(policy(rule)), {"a": 0, "b": 0})
        assert len(response.rules[0].violations) == 2

    def test_custom_message(self):
        rule = {"name": "r", "assert": {"all": [check({"a": 1}, message="a must be one")]}}
        [response] = assertions.run(assertions.parse_policies(policy(rule)), {"a": 2})
        violation = response.rules[0].violations[0]
        assert violation.message == "a must be one"
        assert violation.details == ["a: Invalid value: 2: Expected value: 1"]

    def test_unmatched_and_excluded_rules_omitted(self):
        rules = [
            {"name": "staging-only", "match": {"all": [{"env": "staging"}]}, "assert": {"all": [check({"a": 1})]}},
            {"name": "not-prod", "exclude": {"any": [{"env": "prod"}]}, "assert": {"all": [check({"a": 1})]}},
            {"name": "prod-only", "match": {"any": [{"env": "prod"}]}, "assert": {"all": [check({"a": 1})]}},
        ]
        [response] = assertions.run(assertions.parse_policies(policy(*rules)), {"env": "prod", "a": 1})
        assert [r.rule for r in response.rules] == ["prod-only"]

    def test_tree_error_recorded_on_rule(self):
        rule = {"name": "broken", "assert": {"all": [check({"~.env": {"a": 1}})]}}
        [response] = assertions.run(assertions.parse_policies(policy(rule)), {"env": "prod"})
        assert response.rules[0].error is not None
        assert response.rules[0].violations == []


class TestParseRuleFilter:
    def test_pairs(self):
        assert parse_rule_filter(["labels.foo", " labels . bar "]) == {("labels", "foo"), ("labels", "bar")}

    def test_malformed_dropped(self):
        assert parse_rule_filter(["labels", "a.b.c", "ok.rule"]) == {("ok", "rule")}


class TestKyvernoProvider:
    @pytest.mark.asyncio
    async def test_all_pods_labelled(self):
        provider = KyvernoProvider(KyvernoSpec(policy=POLICY_YAML))
        resources = {"podsvt": [pod("one", foo="bar", bar="baz"), pod("two", foo="bar", bar="baz")]}
        result = await provider.evaluate(resources)
        assert (result.passing, result.failing) == (2, 0)
        assert result.observations == {}

    @pytest.mark.asyncio
    async def test_failing_rules_observed(self):
        provider = KyvernoProvider(KyvernoSpec(policy=POLICY_YAML))
        result = await provider.evaluate({"podsvt": [pod("one", foo="qux", bar="baz")]})
        assert (result.passing, result.failing) == (1, 1)
        assert list(result.observations) == ["labels,foo-label-exists-0,0"]

    @pytest.mark.asyncio
    async def test_filters(self):
        output = KyvernoOutput(
            validation="labels.foo-label-exists",
            observations=["labels.foo-label-exists"],
        )
        provider = KyvernoProvider(KyvernoSpec(policy=POLICY_YAML, output=output))
        result = await provider.evaluate({"podsvt": [pod("one")]})
        assert (result.passing, result.failing) == (0, 1)
        assert list(result.observations) == ["labels,foo-label-exists-0,0"]
        assert "Invalid value: None" in result.observations["labels,foo-label-exists-0,0"]

    @pytest.mark.asyncio
    async def test_comma_separated_validation_filter(self):
        output = KyvernoOutput(validation="labels.foo-label-exists, labels.bar-label-exists")
        provider = KyvernoProvider(KyvernoSpec(policy=POLICY_YAML, output=output))
        result = await provider.evaluate({"podsvt": [pod("one", foo="bar")]})
        assert (result.passing, result.failing) == (1, 1)

    @pytest.mark.asyncio
    async def test_errored_rule_skipped(self):
        rules = [
            {"name": "broken", "assert": {"all": [check({"~.env": {"a": 1}})]}},
            {"name": "env", "assert": {"all": [check({"env": "prod"})]}},
        ]
        provider = KyvernoProvider(KyvernoSpec(policy=policy(*rules)))
        result = await provider.evaluate({"env": "prod"})
        assert (result.passing, result.failing) == (1, 0)

    @pytest.mark.asyncio
    async def test_empty_resources(self):
        provider = KyvernoProvider(KyvernoSpec(policy=POLICY_YAML))
        result = await provider.evaluate({})
        assert (result.passing, result.failing) == (0, 0)

    @pytest.mark.asyncio
    async def test_unparseable_policy(self):
        provider = KyvernoProvider(KyvernoSpec(policy="metadata: {}\n"))
        with pytest.raises(EvaluationError):
            await provider.evaluate({"env": "prod"})

    def test_missing_policy(self):
        with pytest.raises(SpecValidationError, match="requires a policy"):
            KyvernoProvider(KyvernoSpec())

"""
结果脱敏与影响统计测试
"""
import json

from guardlayer.services.dto import EffectiveRule, RuleSource, RuleType
from guardlayer.services.policy_resolver import build_policy
from guardlayer.services.redaction_service import (
    GLOBAL_REGEX,
    MASK_CHAR,
    MASK_TOKEN,
    RandomTokenSource,
    RedactionService,
    mask_email,
)

from conftest import SequenceTokenSource, column_rule, make_snapshot, pattern_rule, user_set


SNAPSHOT = make_snapshot({
    "customers": ["id", "name", "email"],
    "orders": ["id", "customer_email", "total"],
})


def _rule(rule_type):
    return EffectiveRule(
        table_name="t", column_name="c", rule_type=rule_type, source=RuleSource.COLUMN
    )


class TestMaskEmail:
    """测试邮箱掩码"""

    def test_short_local_part(self):
        masked = mask_email("ab@example.com")
        assert masked == "a*@e********om"
        assert masked.count("@") == 1
        assert masked.startswith("a")
        assert masked.split("@")[1].startswith("e")
        assert masked.endswith("om")
        assert set(masked.replace("@", "")[1:-2]) <= {MASK_CHAR, "e"}

    def test_single_character_local_part(self):
        assert mask_email("a@bc.io") == "a*@b**io"

    def test_not_an_email(self):
        assert mask_email("no at sign") == MASK_TOKEN
        assert mask_email("a@b@c") == MASK_TOKEN
        assert mask_email("@example.com") == MASK_TOKEN


class TestApplyRule:
    """测试单值规则"""

    def test_hash_uses_token_source(self):
        service = RedactionService(SequenceTokenSource())
        first = service.apply_rule("secret", _rule(RuleType.HASH))
        second = service.apply_rule("secret", _rule(RuleType.HASH))
        assert first == "[HASH_t1]"
        assert second == "[HASH_t2]"

    def test_random_hash_differs_from_input_and_previous(self):
        service = RedactionService(RandomTokenSource())
        first = service.apply_rule("secret", _rule(RuleType.HASH))
        second = service.apply_rule("secret", _rule(RuleType.HASH))
        assert first != "secret"
        assert first != second
        assert first.startswith("[HASH_") and len(first) == len("[HASH_]") + 9

    def test_mask_email_on_non_string_falls_back_to_mask(self):
        service = RedactionService()
        assert service.apply_rule(42, _rule(RuleType.MASK_EMAIL)) == MASK_TOKEN
        assert service.apply_rule(None, _rule(RuleType.MASK_EMAIL)) == MASK_TOKEN

    def test_other_rule_types_mask(self):
        service = RedactionService()
        for rule_type in (RuleType.REDACT, RuleType.REMOVE, RuleType.EXPOSE):
            assert service.apply_rule("x", _rule(rule_type)) == MASK_TOKEN
        assert service.apply_rule("x", None) == MASK_TOKEN


class TestRedactRows:
    """测试结果行脱敏"""

    def test_rules_applied_to_matching_keys(self):
        policy = build_policy(
            SNAPSHOT,
            [column_rule("orders", "customer_email", "MASK_EMAIL"), column_rule("orders", "total", "HASH")],
            [], None, [],
        )
        service = RedactionService(SequenceTokenSource())
        rows, masked, hashed = service.redact_rows(
            [{"id": 1, "customer_email": "ab@example.com", "total": 10}], policy
        )
        assert rows == [{"id": 1, "customer_email": "a*@e********om", "total": "[HASH_t1]"}]
        assert masked == {"orders.customer_email"}
        assert hashed == {"orders.total"}

    def test_does_not_mutate_input(self):
        policy = build_policy(SNAPSHOT, [column_rule("customers", "name")], [], None, [])
        original = [{"name": "Alice"}]
        RedactionService().redact_rows(original, policy)
        assert original == [{"name": "Alice"}]

    def test_key_shared_by_two_tables_is_redacted_once(self):
        policy = build_policy(
            SNAPSHOT,
            [column_rule("customers", "id", "HASH"), column_rule("orders", "id", "HASH")],
            [], None, [],
        )
        service = RedactionService(SequenceTokenSource())
        rows, _, hashed = service.redact_rows([{"id": 7}], policy)
        assert rows == [{"id": "[HASH_t1]"}]
        assert hashed == {"customers.id"}

    def test_global_patterns_apply_to_string_values(self):
        policy = build_policy(
            SNAPSHOT, [], [], None,
            [pattern_rule("ssn", r"\d{3}-\d{2}-\d{4}", replacement="[SSN]")],
        )
        rows, _, _ = RedactionService().redact_rows(
            [{"note": "ssn 123-45-6789", "count": 123456789}], policy
        )
        assert rows == [{"note": "[SSN]", "count": 123456789}]

    def test_first_matching_pattern_wins(self):
        policy = build_policy(
            SNAPSHOT, [], [], None,
            [
                pattern_rule("card", r"\d{4}-\d{4}", replacement="[CARD]"),
                pattern_rule("digits", r"\d+", replacement="[DIGITS]"),
            ],
        )
        rows, _, _ = RedactionService().redact_rows(
            [{"a": "card 1234-5678", "b": "order 42"}], policy
        )
        assert rows == [{"a": "[CARD]", "b": "[DIGITS]"}]

    def test_column_redacted_value_still_checked_by_patterns(self):
        policy = build_policy(
            SNAPSHOT,
            [column_rule("customers", "name")],
            [], None,
            [pattern_rule("mask", MASK_TOKEN, replacement="[HIDDEN]")],
        )
        rows, _, _ = RedactionService().redact_rows([{"name": "Alice"}], policy)
        assert rows == [{"name": "[HIDDEN]"}]


class TestComputeImpact:
    """测试影响统计"""

    def test_explicit_mask_email(self):
        policy = build_policy(
            SNAPSHOT, [column_rule("orders", "customer_email", "MASK_EMAIL")], [], None, []
        )
        service = RedactionService(SequenceTokenSource())
        sql = "SELECT id, customer_email FROM orders"
        _, impact = service.redact([{"id": 1, "customer_email": "ab@example.com"}], policy, sql)

        assert impact.masked_columns == ["orders.customer_email"]
        assert impact.hidden_columns == ["orders.customer_email"]
        assert impact.removed_from_schema == ["orders.customer_email"]
        assert impact.rule_summary["MASK_EMAIL"] == 1
        assert impact.rule_summary[GLOBAL_REGEX] == 0
        assert impact.redactions_applied is True

    def test_implicit_application_through_table_reference(self):
        policy = build_policy(SNAPSHOT, [column_rule("orders", "total", "HASH")], [], None, [])
        _, impact = RedactionService().redact([{"id": 1}], policy, "SELECT id FROM orders")

        assert impact.hash_applied == ["orders.total"]
        assert impact.rule_summary["HASH"] == 1

    def test_hidden_columns_matched_by_column_name_only(self):
        snapshot = make_snapshot({"customers": ["id", "email"], "orders": ["id", "email"]})
        policy = build_policy(
            snapshot,
            [column_rule("customers", "email"), column_rule("orders", "email")],
            [], None, [],
        )
        _, impact = RedactionService().redact([{"id": 1}], policy, "SELECT id FROM orders")

        assert impact.rule_summary["REDACT"] == 1
        assert impact.hidden_columns == ["customers.email", "orders.email"]

    def test_unrelated_query_applies_nothing(self):
        policy = build_policy(SNAPSHOT, [column_rule("orders", "total", "HASH")], [], None, [])
        _, impact = RedactionService().redact([{"id": 1}], policy, "SELECT id FROM customers")

        assert impact.redactions_applied is False
        assert impact.hash_applied == []
        assert impact.hidden_columns == []
        assert impact.rule_summary == {
            "REDACT": 0, "MASK_EMAIL": 0, "HASH": 0, "REMOVE": 0, GLOBAL_REGEX: 0
        }

    def test_lower_precedence_rule_not_reported_as_masked(self):
        policy = build_policy(
            SNAPSHOT,
            [column_rule("customers", "email", "REDACT")],
            [],
            user_set(json.dumps([
                {"tableName": "customers", "columnName": "email", "ruleType": "MASK_EMAIL"}
            ])),
            [],
        )
        _, impact = RedactionService().redact(
            [{"email": "ab@example.com"}], policy, "SELECT email FROM customers"
        )
        assert impact.masked_columns == []
        assert impact.rule_summary["REDACT"] == 1
        assert impact.rule_summary["MASK_EMAIL"] == 1

    def test_global_regex_counted_against_serialized_rows(self):
        policy = build_policy(
            SNAPSHOT, [], [], None,
            [pattern_rule("card", r"\d{4}-\d{4}"), pattern_rule("never", "zzz")],
        )
        _, impact = RedactionService().redact(
            [{"note": "card 1234-5678"}], policy, "SELECT note FROM customers"
        )
        # 替换后的结果中已不含卡号
        assert impact.rule_summary[GLOBAL_REGEX] == 0

        policy = build_policy(
            SNAPSHOT, [], [], None, [pattern_rule("keep", "REDACTED", replacement="***REDACTED***")]
        )
        _, impact = RedactionService().redact(
            [{"note": "REDACTED already"}], policy, "SELECT note FROM customers"
        )
        assert impact.rule_summary[GLOBAL_REGEX] == 1

    def test_audit_dict_uses_camel_case_and_omits_flag(self):
        policy = build_policy(SNAPSHOT, [column_rule("orders", "total")], [], None, [])
        _, impact = RedactionService().redact([], policy, "SELECT total FROM orders")
        audit_dict = impact.to_audit_dict()
        assert set(audit_dict) == {
            "hiddenColumns", "maskedColumns", "hashApplied", "removedFromSchema", "ruleSummary"
        }

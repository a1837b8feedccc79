"""Tests for workflow definition parsing and coercion."""

import pytest

from core.constants import DelayUnit, TriggerScope, TriggerType
from core.exceptions import JobFatalError, StepConfigError
from workflow.definition import (
    AddTagStep,
    DelayStep,
    SendEmailStep,
    coerce_amount,
    coerce_unit,
    parse_step,
    parse_steps,
    parse_trigger,
)


@pytest.mark.unit
class TestDelayCoercion:

    @pytest.mark.parametrize("raw,expected", [
        (3, 3),
        ("3", 3),
        ("5 days", 5),
        (2.9, 2),
        (None, 1),
        ("", 1),
        ("soon", 1),
        (0, 1),
        (-4, 1),
        (True, 1),
    ])
    def test_amount(self, raw, expected):
        assert coerce_amount(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("minutes", DelayUnit.MINUTES),
        ("HOURS", DelayUnit.HOURS),
        ("day", DelayUnit.DAYS),
        ("hour", DelayUnit.HOURS),
        (None, DelayUnit.DAYS),
        ("fortnights", DelayUnit.DAYS),
    ])
    def test_unit(self, raw, expected):
        assert coerce_unit(raw) == expected

    def test_delay_accepts_legacy_value_key(self):
        step = parse_step({"type": "delay", "config": {"value": "4", "unit": "hours"}})
        assert step == DelayStep(amount=4, unit=DelayUnit.HOURS)

    def test_delay_without_config_defaults_to_one_day(self):
        assert parse_step({"type": "delay"}) == DelayStep(amount=1, unit=DelayUnit.DAYS)


@pytest.mark.unit
class TestStepParsing:

    def test_send_email_accepts_camel_case_keys(self):
        step = parse_step({"type": "send_email", "config": {"templateId": "t1", "senderId": "s1"}})
        assert step == SendEmailStep(template_id="t1", sender_id="s1")

    def test_send_email_without_sender(self):
        step = parse_step({"type": "send_email", "config": {"template_id": "t1"}})
        assert step.sender_id is None

    def test_fields_next_to_type_are_read(self):
        step = parse_step({"id": "s1", "type": "add_tag", "tag": "vip"})
        assert step == AddTagStep(tag_name="vip")

    def test_add_tag_strips_whitespace(self):
        assert parse_step({"type": "add_tag", "config": {"tag": "  vip "}}).tag_name == "vip"

    @pytest.mark.parametrize("config", [{}, {"tag": ""}, {"tag": "   "}])
    def test_add_tag_without_tag_is_config_error(self, config):
        with pytest.raises(StepConfigError):
            parse_step({"type": "add_tag", "config": config})

    def test_unknown_step_type_is_job_fatal(self):
        with pytest.raises(StepConfigError, match="Unknown step type 'sms'") as exc_info:
            parse_step({"type": "sms"})
        assert isinstance(exc_info.value, JobFatalError)
        assert exc_info.value.kind == "step_config"

    def test_parse_steps_keeps_order(self):
        steps = parse_steps([
            {"type": "delay", "config": {"amount": 1, "unit": "hours"}},
            {"type": "send_email", "config": {"template_id": "t1"}},
            {"type": "add_tag", "config": {"tag": "done"}},
        ])
        assert [type(s) for s in steps] == [DelayStep, SendEmailStep, AddTagStep]

    def test_missing_steps_is_empty_workflow(self):
        assert parse_steps(None) == ()

    def test_non_list_steps_rejected(self):
        with pytest.raises(StepConfigError):
            parse_steps({"type": "delay"})


@pytest.mark.unit
class TestTriggerParsing:

    def test_column_trigger_type_wins(self):
        trigger = parse_trigger({"type": "contact_added"}, trigger_type="tag_added")
        assert trigger.kind == TriggerType.TAG_ADDED

    def test_builder_layout_with_tag_filter(self):
        trigger = parse_trigger({
            "event": "tag_added",
            "tag_filter": ["vip", "lead"],
            "required_tag": "customer",
            "scope": "once_per_contact",
        })
        assert trigger.kind == TriggerType.TAG_ADDED
        assert trigger.tags == ("vip", "lead")
        assert trigger.required_tags == ("customer",)
        assert trigger.scope == TriggerScope.ONCE_PER_CONTACT

    def test_custom_webhook_alias(self):
        assert parse_trigger({"event": "custom_webhook"}).kind == TriggerType.WEBHOOK

    def test_event_name_from_config(self):
        trigger = parse_trigger({"type": "event", "config": {"event": "signup"}})
        assert trigger.event_name == "signup"

    def test_event_name_from_event_key_when_kind_is_on_column(self):
        trigger = parse_trigger({"event": "purchase"}, trigger_type="event")
        assert trigger.kind == TriggerType.EVENT
        assert trigger.event_name == "purchase"

    def test_unknown_kind_is_manual(self):
        assert parse_trigger({"type": "phase_of_moon"}).kind == TriggerType.MANUAL

    def test_invalid_scope_is_unlimited(self):
        assert parse_trigger({"type": "manual", "scope": "twice"}).scope == TriggerScope.UNLIMITED

    def test_tag_trigger_matching(self):
        trigger = parse_trigger({"type": "tag_added", "config": {"tag": "vip"}})
        assert trigger.matches(TriggerType.TAG_ADDED, tag="vip")
        assert not trigger.matches(TriggerType.TAG_ADDED, tag="lead")
        assert not trigger.matches(TriggerType.CONTACT_ADDED)

    def test_tag_trigger_without_filter_matches_any_tag(self):
        trigger = parse_trigger({"type": "tag_added"})
        assert trigger.matches(TriggerType.TAG_ADDED, tag="anything")

    def test_event_trigger_requires_same_name(self):
        trigger = parse_trigger({"type": "event", "config": {"event": "signup"}})
        assert trigger.matches(TriggerType.EVENT, event_name="signup")
        assert not trigger.matches(TriggerType.EVENT, event_name="purchase")
        assert not trigger.matches(TriggerType.EVENT)

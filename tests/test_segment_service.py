from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from lineflow.database import ensure_timezone
from lineflow.models import DeliveryLog, Message
from lineflow.schemas.segment import SegmentCondition
from lineflow.services.line_service import LineApiError
from lineflow.services.segment_service import (
    InvalidSegmentCondition,
    build_segment_query,
    count_segment,
    get_broadcast_history,
    preview_segment,
    schedule_segment_broadcast,
    send_segment,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)

VIP_ACTIVE = [
    {"type": "tag", "operator": "eq", "value": "VIP"},
    {"type": "status", "operator": "eq", "value": "active"},
]


@pytest.fixture
def vip_contacts(make_contact):
    return {
        "vip_active": make_contact(display_name="A", tags=["VIP"]),
        "vip_blocked": make_contact(display_name="B", tags=["VIP"], status="blocked"),
        "plain": make_contact(display_name="C"),
    }


def _ids(db, conditions, now=NOW):
    return {contact.id for contact in db.execute(build_segment_query(conditions, now=now)).scalars()}


class TestConditionValidation:
    @pytest.mark.parametrize(
        "condition",
        [
            {"type": "tag", "operator": "gt", "value": "VIP"},
            {"type": "status", "operator": "contains", "value": "act"},
            {"type": "last_message_days", "operator": "neq", "value": "3"},
            {"type": "attribute", "operator": "eq", "value": "x"},
            {"type": "attribute", "field": "age", "operator": "gt", "value": "thirty"},
            {"type": "last_message_days", "operator": "lt", "value": "7 days"},
            {"type": "last_message_days", "operator": "gt", "value": "1000000"},
            {"type": "birthday", "operator": "eq", "value": "x"},
        ],
    )
    def test_rejected(self, condition):
        with pytest.raises(ValidationError):
            SegmentCondition.model_validate(condition)

    def test_service_reports_invalid_dicts(self):
        with pytest.raises(InvalidSegmentCondition):
            build_segment_query([{"type": "tag", "operator": "lt", "value": "VIP"}])


class TestBuildSegmentQuery:
    def test_vip_and_active(self, db_session, vip_contacts):
        assert _ids(db_session, VIP_ACTIVE) == {vip_contacts["vip_active"].id}

    def test_tag_neq_means_without_tag(self, db_session, vip_contacts):
        ids = _ids(db_session, [{"type": "tag", "operator": "neq", "value": "VIP"}])
        assert ids == {vip_contacts["plain"].id}

    def test_tag_neq_ignores_other_tags_held(self, db_session, make_contact):
        both = make_contact(tags=["VIP", "gold"])
        gold_only = make_contact(tags=["gold"])
        untagged = make_contact()

        ids = _ids(db_session, [{"type": "tag", "operator": "neq", "value": "VIP"}])

        assert both.id not in ids
        assert ids == {gold_only.id, untagged.id}

    def test_tag_contains(self, db_session, make_contact):
        gold = make_contact(tags=["gold-member"])
        make_contact(tags=["silver"])
        assert _ids(db_session, [{"type": "tag", "operator": "contains", "value": "gold"}]) == {gold.id}

    def test_two_tag_conditions_need_both(self, db_session, make_contact):
        both = make_contact(tags=["VIP", "東京"])
        make_contact(tags=["VIP"])
        conditions = [
            {"type": "tag", "operator": "eq", "value": "VIP"},
            {"type": "tag", "operator": "eq", "value": "東京"},
        ]
        assert _ids(db_session, conditions) == {both.id}

    def test_each_tag_condition_gets_own_alias(self):
        conditions = [
            {"type": "tag", "operator": "eq", "value": "VIP"},
            {"type": "tag", "operator": "eq", "value": "東京"},
            {"type": "attribute", "field": "plan", "operator": "eq", "value": "pro"},
            {"type": "attribute", "field": "age", "operator": "gt", "value": "20"},
        ]
        sql = str(build_segment_query(conditions, now=NOW))
        for alias in ("ct0", "t0", "ct1", "t1", "ca0", "ca1"):
            assert alias in sql

    def test_attribute_numeric_comparison(self, db_session, make_contact):
        older = make_contact(attributes={"age": "42"})
        make_contact(attributes={"age": "9"})
        make_contact()

        assert _ids(db_session, [{"type": "attribute", "field": "age", "operator": "gt", "value": "20"}]) == {older.id}

    def test_attribute_eq_and_neq(self, db_session, make_contact):
        pro = make_contact(attributes={"plan": "pro"})
        free = make_contact(attributes={"plan": "free"})

        assert _ids(db_session, [{"type": "attribute", "field": "plan", "operator": "eq", "value": "pro"}]) == {pro.id}
        assert _ids(db_session, [{"type": "attribute", "field": "plan", "operator": "neq", "value": "pro"}]) == {free.id}

    def test_status_neq(self, db_session, vip_contacts):
        ids = _ids(db_session, [{"type": "status", "operator": "neq", "value": "active"}])
        assert ids == {vip_contacts["vip_blocked"].id}

    def test_values_are_bound_parameters(self):
        hostile = "VIP'; DROP TABLE contacts; --"
        stmt = build_segment_query([{"type": "tag", "operator": "eq", "value": hostile}], now=NOW)
        compiled = stmt.compile()

        assert hostile not in str(compiled)
        assert hostile in compiled.params.values()

    def test_hostile_value_matches_nothing(self, db_session, vip_contacts):
        assert _ids(db_session, [{"type": "status", "operator": "eq", "value": "x' OR '1'='1"}]) == set()


class TestLastMessageDays:
    @pytest.fixture
    def activity(self, make_contact, add_message):
        recent = make_contact(display_name="recent")
        stale = make_contact(display_name="stale")
        silent = make_contact(display_name="silent")
        add_message(recent, created_at=NOW - timedelta(days=3, hours=1))
        add_message(stale, created_at=NOW - timedelta(days=10))
        # Outbound traffic does not count as activity
        add_message(silent, direction="outbound", created_at=NOW - timedelta(days=1))
        return recent, stale, silent

    def test_lt(self, db_session, activity):
        recent, _, _ = activity
        assert _ids(db_session, [{"type": "last_message_days", "operator": "lt", "value": "7"}]) == {recent.id}

    def test_gt_includes_never_messaged(self, db_session, activity):
        _, stale, silent = activity
        ids = _ids(db_session, [{"type": "last_message_days", "operator": "gt", "value": "7"}])
        assert ids == {stale.id, silent.id}

    def test_eq_selects_that_day(self, db_session, activity):
        recent, _, _ = activity
        assert _ids(db_session, [{"type": "last_message_days", "operator": "eq", "value": "3"}]) == {recent.id}
        assert _ids(db_session, [{"type": "last_message_days", "operator": "eq", "value": "4"}]) == set()

    def test_cutoff_is_bound_not_interpolated(self):
        stmt = build_segment_query([{"type": "last_message_days", "operator": "lt", "value": "7"}], now=NOW)
        compiled = stmt.compile()
        assert NOW - timedelta(days=7) in compiled.params.values()
        assert "interval" not in str(compiled).lower()


class TestSegmentOperations:
    def test_preview_counts_and_caps(self, db_session, make_contact):
        for _ in range(3):
            make_contact(tags=["VIP"])

        count, contacts = preview_segment(db_session, [{"type": "tag", "operator": "eq", "value": "VIP"}], limit=2)

        assert count == 3
        assert len(contacts) == 2

    def test_count_segment(self, db_session, vip_contacts):
        assert count_segment(db_session, VIP_ACTIVE) == 1

    def test_send_records_each_recipient(self, db_session, make_contact, mock_line):
        ok = make_contact(tags=["VIP"])
        bad = make_contact(tags=["VIP"])

        def push(to, messages):
            if to == bad.line_user_id:
                raise LineApiError("LINE API error: 400", 400)

        mock_line.push_message.side_effect = push

        results = send_segment(db_session, [{"type": "tag", "operator": "eq", "value": "VIP"}], "セール開始", mock_line)

        assert results == {"sent": 1, "failed": 1}
        logs = {log.contact_id: log for log in db_session.query(DeliveryLog).all()}
        assert logs[ok.id].status == "sent"
        assert logs[bad.id].status == "failed"
        assert all(log.scenario_id is None for log in logs.values())
        assert db_session.query(Message).filter(Message.direction == "outbound").count() == 1

    def test_schedule_writes_pending_rows(self, db_session, vip_contacts):
        at = NOW + timedelta(days=1)

        broadcast_id, count = schedule_segment_broadcast(db_session, VIP_ACTIVE, "明日のお知らせ", at)
        db_session.commit()

        rows = db_session.query(DeliveryLog).all()
        assert count == 1
        assert len(rows) == 1
        assert rows[0].status == "pending"
        assert rows[0].broadcast_id == broadcast_id
        assert rows[0].message_content == "明日のお知らせ"
        assert ensure_timezone(rows[0].scheduled_at) == at

    def test_history_paginates_broadcast_rows(self, db_session, make_contact, mock_line):
        for _ in range(3):
            make_contact(tags=["VIP"], display_name="客")
        send_segment(db_session, [{"type": "tag", "operator": "eq", "value": "VIP"}], "hi", mock_line)

        rows, total = get_broadcast_history(db_session, page=2, limit=2)

        assert total == 3
        assert len(rows) == 1
        log, display_name = rows[0]
        assert display_name == "客"

import json
from unittest.mock import patch

import pytest

from lineflow.config import settings
from lineflow.models import Contact, DeliveryLog, Message, Scenario, ScenarioStep
from lineflow.services.ai_service import AiReplyResult
from lineflow.services.line_service import LineApiError, compute_signature

SECRET = "test-channel-secret"


def _post(client, payload, signature=None, raw=None):
    body = raw if raw is not None else json.dumps(payload).encode()
    headers = {"Content-Type": "application/json"}
    if signature is None:
        signature = compute_signature(body, SECRET)
    if signature:
        headers["X-Line-Signature"] = signature
    return client.post("/webhook", content=body, headers=headers)


def _text_event(user_id="U-webhook-1", text="こんにちは", reply_token="rt-1"):
    return {
        "type": "message",
        "replyToken": reply_token,
        "source": {"type": "user", "userId": user_id},
        "message": {"id": "m1", "type": "text", "text": text},
        "timestamp": 1700000000000,
    }


def _follow_event(user_id="U-follow-1"):
    return {"type": "follow", "replyToken": "rt-f", "source": {"type": "user", "userId": user_id}}


@pytest.fixture(autouse=True)
def webhook_settings(monkeypatch, mock_line):
    monkeypatch.setattr(settings, "line_channel_secret", SECRET)
    monkeypatch.setattr(settings, "reply_mode", "echo")
    with patch("lineflow.routers.webhook.get_line_service", return_value=mock_line):
        yield


class TestSignatureGate:
    def test_missing_signature_returns_400(self, client, db_session):
        response = _post(client, {"events": [_text_event()]}, signature="")
        assert response.status_code == 400
        assert db_session.query(Contact).count() == 0

    def test_invalid_signature_returns_403(self, client, db_session):
        response = _post(client, {"events": [_text_event()]}, signature="AAAA")
        assert response.status_code == 403
        assert db_session.query(Message).count() == 0

    def test_bad_json_after_valid_signature_returns_400(self, client):
        response = _post(client, None, raw=b"{not json")
        assert response.status_code == 400

    def test_empty_events_returns_success(self, client):
        response = _post(client, {"destination": "U0", "events": []})
        assert response.status_code == 200
        assert response.json() == {"success": True}


class TestMessageEvents:
    def test_text_message_creates_contact_and_messages(self, client, db_session, mock_line):
        response = _post(client, {"events": [_text_event(text="在庫ありますか")]})

        assert response.status_code == 200
        contact = db_session.query(Contact).one()
        assert contact.line_user_id == "U-webhook-1"
        assert contact.display_name == "Taro"
        directions = sorted(m.direction for m in db_session.query(Message).all())
        assert directions == ["inbound", "outbound"]
        mock_line.reply_message.assert_called_once_with(
            "rt-1", [{"type": "text", "text": "受信: 在庫ありますか"}]
        )

    def test_second_message_reuses_contact(self, client, db_session, mock_line):
        _post(client, {"events": [_text_event(text="one")]})
        _post(client, {"events": [_text_event(text="two", reply_token="rt-2")]})

        assert db_session.query(Contact).count() == 1
        mock_line.get_profile.assert_called_once()

    def test_non_text_message_stored_without_reply(self, client, db_session, mock_line):
        event = _text_event()
        event["message"] = {"id": "m2", "type": "sticker", "packageId": "1", "stickerId": "2"}

        _post(client, {"events": [event]})

        message = db_session.query(Message).one()
        assert message.content == "[sticker]"
        assert message.message_type == "sticker"
        mock_line.reply_message.assert_not_called()

    def test_reply_mode_off_sends_nothing(self, client, db_session, mock_line, monkeypatch):
        monkeypatch.setattr(settings, "reply_mode", "off")

        _post(client, {"events": [_text_event()]})

        mock_line.reply_message.assert_not_called()
        assert db_session.query(Message).count() == 1

    def test_ai_mode_uses_generated_reply(self, client, db_session, mock_line, monkeypatch):
        monkeypatch.setattr(settings, "reply_mode", "ai")
        result = AiReplyResult(text="営業時間は10時からです", should_escalate=False, confidence=0.8)

        with patch("lineflow.routers.webhook.generate_ai_reply", return_value=result) as mock_ai:
            _post(client, {"events": [_text_event(text="営業時間は？")]})

        assert mock_ai.call_args[0][2] == "営業時間は？"
        mock_line.reply_message.assert_called_once_with("rt-1", [{"type": "text", "text": "営業時間は10時からです"}])

    def test_keyword_trigger_runs_scenario(self, client, db_session, mock_line):
        scenario = Scenario(name="stock", trigger_type="message_keyword", trigger_config={"keywords": ["在庫"]})
        db_session.add(scenario)
        db_session.flush()
        db_session.add(ScenarioStep(scenario_id=scenario.id, step_order=1, message_content="在庫のご案内"))
        db_session.commit()

        _post(client, {"events": [_text_event(text="在庫ありますか")]})

        log = db_session.query(DeliveryLog).one()
        assert log.status == "sent"
        assert log.scenario_id == scenario.id
        mock_line.push_message.assert_called_once_with("U-webhook-1", [{"type": "text", "text": "在庫のご案内"}])


class TestFollowEvents:
    def test_follow_creates_active_contact_and_runs_follow_scenarios(self, client, db_session, mock_line):
        scenario = Scenario(name="welcome", trigger_type="follow", trigger_config={})
        db_session.add(scenario)
        db_session.flush()
        db_session.add_all(
            [
                ScenarioStep(scenario_id=scenario.id, step_order=1, message_content="ようこそ"),
                ScenarioStep(scenario_id=scenario.id, step_order=2, message_content="3日後", delay_minutes=4320),
            ]
        )
        db_session.commit()

        _post(client, {"events": [_follow_event()]})

        contact = db_session.query(Contact).one()
        assert contact.status == "active"
        statuses = sorted(log.status for log in db_session.query(DeliveryLog).all())
        assert statuses == ["pending", "sent"]

    def test_unfollow_marks_contact(self, client, db_session, make_contact):
        make_contact(line_user_id="U-gone")

        _post(client, {"events": [{"type": "unfollow", "source": {"type": "user", "userId": "U-gone"}}]})

        assert db_session.query(Contact).one().status == "unfollowed"

    def test_refollow_reactivates_without_clearing_profile(self, client, db_session, make_contact, mock_line):
        make_contact(line_user_id="U-back", status="unfollowed", display_name="Old Name")
        mock_line.get_profile.side_effect = LineApiError("unavailable", 500)

        _post(client, {"events": [_follow_event("U-back")]})

        contact = db_session.query(Contact).one()
        assert contact.status == "active"
        assert contact.display_name == "Old Name"


class TestPostbackAndUnknown:
    def test_postback_stored_as_inbound(self, client, db_session, mock_line):
        event = {
            "type": "postback",
            "replyToken": "rt-p",
            "source": {"type": "user", "userId": "U-pb"},
            "postback": {"data": "action=buy&item=1"},
        }

        _post(client, {"events": [event]})

        message = db_session.query(Message).one()
        assert message.message_type == "postback"
        assert message.content == "action=buy&item=1"
        mock_line.reply_message.assert_not_called()

    def test_unknown_event_type_ignored(self, client, db_session):
        response = _post(client, {"events": [{"type": "beacon", "source": {"userId": "U-b"}}]})
        assert response.status_code == 200
        assert db_session.query(Contact).count() == 0


class TestEventIsolation:
    def test_failing_event_does_not_block_later_events(self, client, db_session, mock_line):
        mock_line.reply_message.side_effect = [LineApiError("Invalid reply token", 400), None]

        response = _post(
            client,
            {
                "events": [
                    _text_event(user_id="U-a", text="first", reply_token="rt-a"),
                    _text_event(user_id="U-b", text="second", reply_token="rt-b"),
                ]
            },
        )

        assert response.status_code == 200
        assert db_session.query(Contact).count() == 2
        # The inbound message of the failed event was committed before the reply attempt
        inbound = db_session.query(Message).filter(Message.direction == "inbound").count()
        outbound = db_session.query(Message).filter(Message.direction == "outbound").count()
        assert inbound == 2
        assert outbound == 1

    def test_malformed_event_is_skipped(self, client, db_session):
        response = _post(client, {"events": [{"no_type": True}, _text_event(user_id="U-ok")]})

        assert response.status_code == 200
        assert db_session.query(Contact).one().line_user_id == "U-ok"

    def test_non_object_event_is_skipped(self, client, db_session, make_contact):
        make_contact(line_user_id="U-leaving")

        response = _post(
            client,
            {"events": [1, "follow", {"type": "unfollow", "source": {"type": "user", "userId": "U-leaving"}}]},
        )

        assert response.status_code == 200
        db_session.expire_all()
        assert db_session.query(Contact).one().status == "unfollowed"

import pytest

from lineflow.models import Scenario
from lineflow.schemas.scenario import KeywordTrigger, TagAddedTrigger
from lineflow.services.trigger_service import TriggerConfigInvalid, evaluate_triggers, parse_trigger_config


def _scenario(db, name, trigger_type, config, is_active=True):
    scenario = Scenario(name=name, trigger_type=trigger_type, trigger_config=config, is_active=is_active)
    db.add(scenario)
    db.commit()
    return scenario


class TestParseTriggerConfig:
    def test_keyword_config(self):
        config = parse_trigger_config("message_keyword", {"keywords": ["在庫", "", "  "]})
        assert isinstance(config, KeywordTrigger)
        assert config.keywords == ["在庫"]

    def test_keyword_config_requires_keywords(self):
        with pytest.raises(TriggerConfigInvalid):
            parse_trigger_config("message_keyword", {})
        with pytest.raises(TriggerConfigInvalid):
            parse_trigger_config("message_keyword", {"keywords": [""]})

    def test_tag_added_defaults_to_any(self):
        config = parse_trigger_config("tag_added", None)
        assert isinstance(config, TagAddedTrigger)
        assert config.tag_names == []

    def test_follow_rejects_unknown_keys(self):
        with pytest.raises(TriggerConfigInvalid):
            parse_trigger_config("follow", {"keywords": ["x"]})

    def test_unknown_type(self):
        with pytest.raises(TriggerConfigInvalid):
            parse_trigger_config("birthday", {})

    def test_non_object(self):
        with pytest.raises(TriggerConfigInvalid):
            parse_trigger_config("message_keyword", ["在庫"])


class TestEvaluateTriggers:
    def test_keyword_substring_match(self, db_session):
        scenario = _scenario(db_session, "stock", "message_keyword", {"keywords": ["在庫", "入荷"]})

        assert evaluate_triggers(db_session, "message_keyword", {"text": "在庫ありますか"}) == [scenario.id]
        assert evaluate_triggers(db_session, "message_keyword", {"text": "こんにちは"}) == []

    def test_all_matching_scenarios_returned(self, db_session):
        first = _scenario(db_session, "a", "message_keyword", {"keywords": ["在庫"]})
        second = _scenario(db_session, "b", "message_keyword", {"keywords": ["ありますか"]})

        matched = evaluate_triggers(db_session, "message_keyword", {"text": "在庫ありますか"})

        assert set(matched) == {first.id, second.id}

    def test_malformed_config_is_skipped(self, db_session):
        _scenario(db_session, "broken", "message_keyword", {"keywords": "在庫"})
        good = _scenario(db_session, "good", "message_keyword", {"keywords": ["在庫"]})

        assert evaluate_triggers(db_session, "message_keyword", {"text": "在庫"}) == [good.id]

    def test_inactive_scenarios_ignored(self, db_session):
        _scenario(db_session, "off", "follow", {}, is_active=False)
        assert evaluate_triggers(db_session, "follow", {}) == []

    def test_follow_matches_every_active_follow_scenario(self, db_session):
        scenario = _scenario(db_session, "welcome", "follow", {})
        _scenario(db_session, "stock", "message_keyword", {"keywords": ["在庫"]})

        assert evaluate_triggers(db_session, "follow", {}) == [scenario.id]

    def test_manual_never_matches(self, db_session):
        _scenario(db_session, "manual", "manual", {})
        assert evaluate_triggers(db_session, "manual", {}) == []

    def test_missing_text_never_matches(self, db_session):
        _scenario(db_session, "stock", "message_keyword", {"keywords": ["在庫"]})
        assert evaluate_triggers(db_session, "message_keyword", {}) == []
        assert evaluate_triggers(db_session, "message_keyword", None) == []

    def test_tag_added_filters_by_name(self, db_session):
        vip = _scenario(db_session, "vip", "tag_added", {"tag_names": ["VIP"]})
        anything = _scenario(db_session, "any", "tag_added", {"tag_names": []})

        assert set(evaluate_triggers(db_session, "tag_added", {"tag_name": "VIP"})) == {vip.id, anything.id}
        assert evaluate_triggers(db_session, "tag_added", {"tag_name": "新規"}) == [anything.id]

from conftest import make_settings

from botload.activity import create_message_activity, create_test_activity
from botload.models import Activity, ConversationType


def test_message_activity_payload_uses_wire_names() -> None:
    activity = create_message_activity(
        text="hello",
        user_id="29:user",
        user_name="User",
        bot_id="bot-id",
        service_url="https://smba.test/teams",
        tenant_id="tenant",
    )
    payload = activity.to_payload()
    assert payload["type"] == "message"
    assert payload["from"] == {"id": "29:user", "name": "User", "role": "user"}
    assert payload["recipient"]["id"] == "bot-id"
    assert payload["conversation"]["conversationType"] == "personal"
    assert payload["conversation"]["isGroup"] is False
    assert payload["conversation"]["tenantId"] == "tenant"
    assert payload["channelData"] == {"tenant": {"id": "tenant"}}
    assert payload["serviceUrl"] == "https://smba.test/teams"
    assert payload["textFormat"] == "plain"


def test_channel_activity_is_group() -> None:
    activity = create_message_activity(
        text="hi",
        user_id="u",
        user_name="U",
        bot_id="b",
        service_url="https://smba.test",
        conversation_type=ConversationType.CHANNEL,
        teams_channel_id="19:channel",
    )
    assert activity.conversation.is_group
    assert activity.channel_data.teams_channel_id == "19:channel"


def test_activity_ids_are_unique() -> None:
    first = create_test_activity(make_settings())
    second = create_test_activity(make_settings())
    assert first.id != second.id
    assert first.conversation.id != second.conversation.id


def test_test_activity_uses_settings() -> None:
    settings = make_settings(test_message="ping", microsoft_app_id="app-id", microsoft_app_tenant_id="t")
    activity = create_test_activity(settings, conversation_id="conv-1")
    assert activity.text == "ping"
    assert activity.recipient.id == "app-id"
    assert activity.conversation.id == "conv-1"
    assert activity.from_.id == settings.test_user_id


def test_payload_round_trips_through_model() -> None:
    payload = create_test_activity(make_settings(), text="round").to_payload()
    parsed = Activity.model_validate(payload)
    assert parsed.text == "round"
    assert parsed.from_.role == "user"

import uuid
from datetime import UTC, datetime

from botload.config import Settings
from botload.models import (
    Activity,
    ChannelAccount,
    ChannelData,
    ConversationAccount,
    ConversationType,
    Role,
    TenantInfo,
    TextFormat,
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def create_message_activity(
    *,
    text: str,
    user_id: str,
    user_name: str,
    bot_id: str,
    service_url: str,
    bot_name: str = "Bot",
    aad_object_id: str | None = None,
    conversation_id: str | None = None,
    conversation_type: ConversationType = ConversationType.PERSONAL,
    tenant_id: str | None = None,
    teams_channel_id: str | None = None,
    teams_team_id: str | None = None,
    channel_id: str = "msteams",
    text_format: TextFormat = TextFormat.PLAIN,
    locale: str = "en-US",
) -> Activity:
    channel_data = None
    if tenant_id or teams_channel_id or teams_team_id:
        channel_data = ChannelData(
            teams_channel_id=teams_channel_id,
            teams_team_id=teams_team_id,
            tenant=TenantInfo(id=tenant_id) if tenant_id else None,
        )
    return Activity(
        id=str(uuid.uuid4()),
        timestamp=_now(),
        channel_id=channel_id,
        from_=ChannelAccount(id=user_id, name=user_name, aad_object_id=aad_object_id, role=Role.USER),
        recipient=ChannelAccount(id=bot_id, name=bot_name, role=Role.BOT),
        conversation=ConversationAccount(
            id=conversation_id or f"test-conversation-{uuid.uuid4()}",
            conversation_type=conversation_type,
            is_group=conversation_type in (ConversationType.GROUP, ConversationType.CHANNEL),
            tenant_id=tenant_id,
        ),
        text=text,
        text_format=text_format,
        locale=locale,
        service_url=service_url,
        channel_data=channel_data,
    )


def create_test_activity(settings: Settings, text: str | None = None, conversation_id: str | None = None) -> Activity:
    return create_message_activity(
        text=text if text is not None else settings.test_message,
        user_id=settings.test_user_id,
        user_name=settings.test_user_name,
        aad_object_id=settings.test_user_aad_object_id,
        bot_id=settings.microsoft_app_id or settings.bot_id,
        bot_name=settings.bot_name,
        conversation_id=conversation_id,
        tenant_id=settings.microsoft_app_tenant_id,
        service_url=settings.service_url,
    )

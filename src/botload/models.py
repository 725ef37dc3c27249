from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ActivityType(StrEnum):
    MESSAGE = "message"
    CONVERSATION_UPDATE = "conversationUpdate"
    EVENT = "event"
    INVOKE = "invoke"


class Role(StrEnum):
    USER = "user"
    BOT = "bot"
    CLIENT = "client"


class ConversationType(StrEnum):
    PERSONAL = "personal"
    GROUP = "group"
    CHANNEL = "channel"


class TextFormat(StrEnum):
    PLAIN = "plain"
    MARKDOWN = "markdown"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChannelAccount(_CamelModel):
    id: str = Field(min_length=1)
    name: str
    aad_object_id: str | None = None
    role: Role


class ConversationAccount(_CamelModel):
    id: str = Field(min_length=1)
    conversation_type: ConversationType = ConversationType.PERSONAL
    is_group: bool = False
    tenant_id: str | None = None


class TenantInfo(_CamelModel):
    id: str


class ChannelData(_CamelModel):
    teams_channel_id: str | None = None
    teams_team_id: str | None = None
    tenant: TenantInfo | None = None


class Activity(_CamelModel):
    type: ActivityType = ActivityType.MESSAGE
    id: str
    timestamp: str
    channel_id: str = "msteams"
    from_: ChannelAccount = Field(alias="from")
    recipient: ChannelAccount
    conversation: ConversationAccount
    text: str | None = None
    text_format: TextFormat = TextFormat.PLAIN
    locale: str = "en-US"
    service_url: str
    channel_data: ChannelData | None = None

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BotReply(BaseModel):
    id: str
    status: str

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ActionResponse(BaseModel):
    success: bool
    message: str
    outcome: str | None = None


class MuteResponse(BaseModel):
    success: bool
    message: str
    name: str
    muted: bool
    changed: bool


class TelegramChat(BaseModel):
    id: int | str


class TelegramUser(BaseModel):
    id: int | str
    username: str | None = None


class TelegramMessage(BaseModel):
    message_id: int | None = None
    chat: TelegramChat


class CallbackQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    data: str = ""
    message: TelegramMessage | None = None
    from_user: TelegramUser | None = Field(None, alias="from")


class TelegramUpdate(BaseModel):
    update_id: int | None = None
    callback_query: CallbackQuery | None = None

from __future__ import annotations

from typing import Literal, get_args

from pydantic import BaseModel, ConfigDict, Field

ClickAction = Literal["apply", "copy_link"]
Priority = Literal["one_card", "dining_groceries", "flights_hotels", "everything_else"]
FeeComfort = Literal["any", "$", "$$", "$$$", "$$$$"]
Redemption = Literal["points", "cashback", "simple"]

CLICK_ACTIONS: tuple[str, ...] = get_args(ClickAction)
PRIORITIES: tuple[str, ...] = get_args(Priority)
FEE_COMFORTS: tuple[str, ...] = get_args(FeeComfort)
REDEMPTIONS: tuple[str, ...] = get_args(Redemption)

# Per-field caps applied after control-character stripping.
FIELD_MAX_LENGTHS: dict[str, int] = {
    "cardId": 100,
    "cardName": 200,
    "path": 500,
    "referrer": 300,
    "ua": 500,
}


class Answers(BaseModel):
    """The three wizard answers; values must belong to their closed enums."""

    # Only the wire names are accepted. Unknown keys are dropped so they never reach the click log.
    model_config = ConfigDict(strict=True, extra="ignore")

    priority: Priority
    fee_comfort: FeeComfort = Field(alias="feeComfort")
    redemption: Redemption


DEFAULT_ANSWERS = Answers(priority="one_card", feeComfort="any", redemption="simple")


class SanitizedClickEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    action: ClickAction
    card_id: str = Field(alias="cardId")
    card_name: str = Field(alias="cardName")
    path: str
    ts: int | float
    answers: Answers
    referrer: str
    ua: str
    client_ip: str = Field(alias="clientIP")

    def to_log_dict(self) -> dict[str, object]:
        return self.model_dump(by_alias=True)

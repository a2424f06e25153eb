from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .clicks import Priority

AnnualFee = Literal["$", "$$", "$$$", "$$$$"]
Flavor = Literal["points", "cashback"]

FEE_ORDER: tuple[str, ...] = ("$", "$$", "$$$", "$$$$")


class Card(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1, max_length=100, pattern=r"^[a-zA-Z0-9_-]+$")
    name: str
    issuer: str
    headline: str
    highlights: list[str] = Field(default_factory=list)
    annual_fee: AnnualFee = Field(alias="annualFee")
    recommended_for: list[Priority] = Field(default_factory=list, alias="recommendedFor")
    flavor: Flavor
    # 1 = expert, 4 = super simple
    simplicity: int = Field(ge=1, le=4)
    referral_url: str = Field(alias="referralUrl")
    featured: bool | None = None

    def to_public_dict(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True)

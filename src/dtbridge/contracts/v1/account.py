from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict


class AccountCredential(BaseModel):
    """Credentials for one configured DingTalk robot account."""

    account_id: str
    client_id: str = ""  # AppKey
    client_secret: str = ""  # AppSecret
    robot_code: Optional[str] = None
    enabled: bool = True

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

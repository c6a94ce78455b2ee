from typing import Optional
from urllib.parse import quote

from pydantic import BaseModel


class ParticipantInfo(BaseModel):

    id: str
    name: str
    avatar: str

    @classmethod
    def from_user(cls, user_id: str, user: Optional[dict], avatar_base_url: str) -> "ParticipantInfo":
        name = (user or {}).get("full_name") or "Usuario"
        return cls(id=user_id, name=name, avatar=build_avatar_url((user or {}).get("avatar"), name, avatar_base_url))


class TokenPayload(BaseModel):

    sub: str
    exp: int


def build_avatar_url(avatar: Optional[str], name: str, base_url: str) -> str:
    if not avatar:
        return f"https://ui-avatars.com/api/?name={quote(name)}&background=random"
    if not avatar.startswith("http"):
        return f"{base_url.rstrip('/')}/{avatar.lstrip('/')}"
    return avatar

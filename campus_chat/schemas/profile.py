from typing import Optional

from pydantic import BaseModel


class ProfilePublic(BaseModel):

    id: str
    email: str
    full_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    @classmethod
    def from_document(cls, doc: dict) -> "ProfilePublic":
        return cls(id=str(doc["_id"]), email=doc.get("email", ""), full_name=doc.get("full_name"))


class TokenPayload(BaseModel):

    sub: str
    exp: int
    email: Optional[str] = None

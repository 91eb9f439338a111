from typing import Optional, TypedDict


class ProfileDocument(TypedDict, total=False):

    _id: str
    email: str
    full_name: Optional[str]

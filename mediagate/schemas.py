from datetime import datetime
from typing import List, Optional

from pydantic import AliasGenerator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TokenRequest(BaseModel):
    # fields stay optional so missing values are reported by the token service as a 400
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    message: Optional[str] = None
    file_id: Optional[str] = Field(None, alias="fileId")


class FolderTokenCheck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: Optional[str] = None
    file_id: str = Field(..., alias="fileId")


class Token(BaseModel):
    access_token: str
    token_type: str


class TokenData(BaseModel):
    email: Optional[str] = None
    role: Optional[str] = None


class _CamelOut(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=AliasGenerator(serialization_alias=to_camel),
    )


class AccessTokenOut(_CamelOut):
    token: str
    file_id: str
    file_name: Optional[str] = None
    file_type: str
    expires_at: datetime
    created_at: Optional[datetime] = None


class UserOut(_CamelOut):
    id: str
    name: str
    email: str
    message: Optional[str] = None
    created_at: Optional[datetime] = None
    tokens: List[AccessTokenOut] = []

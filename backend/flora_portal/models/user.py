from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class WordPressUser(BaseModel):
    id: int
    username: str
    email: Optional[str] = None
    display_name: str = ""
    roles: List[str] = Field(default_factory=list)
    capabilities: Dict[str, Any] = Field(default_factory=dict)


class UserLogin(BaseModel):
    username: str
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str
    user: WordPressUser


class UserCreate(BaseModel):
    username: str
    email: str
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    roles: List[str] = Field(default_factory=lambda: ["customer"])


class ApplicationPasswordCreate(BaseModel):
    name: str
    app_id: Optional[str] = None

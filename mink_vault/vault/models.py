"""
Vault models — validated inputs and decrypted record views.

Input models are checked before any cryptographic or storage work;
pydantic failures are re-raised as ``mink_vault.exceptions.ValidationError``.
"""
from typing import Annotated, Any, Literal, Optional, TypeVar

import pydantic
from pydantic import BaseModel, Field

from ..exceptions import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

Label = Annotated[str, Field(max_length=50)]


def validate(model: type[ModelT], data: Any) -> ModelT:
    """Validate ``data`` into ``model``.

    Accepts an instance of the model (returned as-is), or a mapping.

    Raises:
        ValidationError: With one message per failing field.
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as err:
        messages = [
            f"{'.'.join(str(p) for p in e['loc']) or 'input'}: {e['msg']}"
            for e in err.errors()
        ]
        raise ValidationError(
            f"Invalid {model.__name__}: {'; '.join(messages)}", messages,
        ) from None


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

TITLE_MAX_LENGTH = 500
URL_MAX_LENGTH = 2000
FOLDER_NAME_MAX_LENGTH = 200


class NoteInput(BaseModel):
    title: str = Field(default="", max_length=TITLE_MAX_LENGTH)
    content: str = Field(default="", max_length=100_000)
    color: str = Field(default="default", max_length=50)
    labels: list[Label] = Field(default_factory=list, max_length=20)
    is_pinned: bool = False
    is_archived: bool = False


class BookmarkInput(BaseModel):
    title: str = Field(default="", max_length=TITLE_MAX_LENGTH)
    url: str = Field(min_length=1, max_length=URL_MAX_LENGTH)
    description: str = Field(default="", max_length=5000)
    folder_id: Optional[str] = None
    is_favorite: bool = False


class FolderInput(BaseModel):
    name: str = Field(min_length=1, max_length=FOLDER_NAME_MAX_LENGTH)
    parent_id: Optional[str] = None


class FolderUpdate(BaseModel):
    """Partial folder update; ``parent_id=None`` moves the folder to the root.

    Only fields explicitly provided are applied (see ``model_fields_set``).
    """

    name: Optional[str] = Field(default=None, min_length=1, max_length=FOLDER_NAME_MAX_LENGTH)
    parent_id: Optional[str] = None


class ImportRequest(BaseModel):
    html: str
    resolutions: dict[str, Literal["keep_existing", "keep_incoming", "keep_both"]] = Field(
        default_factory=dict
    )


# ---------------------------------------------------------------------------
# Decrypted views
# ---------------------------------------------------------------------------

class Note(BaseModel):
    id: str
    title: str
    content: str
    color: str
    labels: list[str]
    is_pinned: bool = False
    is_archived: bool = False
    created_at: Optional[int] = None
    updated_at: Optional[int] = None


class Bookmark(BaseModel):
    id: str
    folder_id: Optional[str] = None
    title: str
    url: str
    description: str = ""
    is_favorite: bool = False
    sort_order: int = 0
    created_at: Optional[int] = None
    updated_at: Optional[int] = None


class Folder(BaseModel):
    id: str
    parent_id: Optional[str] = None
    name: str
    sort_order: int = 0
    created_at: Optional[int] = None
    updated_at: Optional[int] = None


class DecryptionFailure(BaseModel):
    """Placeholder returned on read paths for a record that did not decrypt."""

    id: str
    kind: Literal["note", "bookmark", "folder"]
    parent_id: Optional[str] = None
    decryption_error: Literal[True] = True


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

class RegistrationInput(BaseModel):
    username: str = Field(min_length=3, max_length=32, pattern=r"^[a-zA-Z0-9_-]+$")
    email: str = Field(max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    role: Literal["admin", "user"] = "user"


class AccountUpdate(BaseModel):
    role: Optional[Literal["admin", "user"]] = None
    is_active: Optional[bool] = None


class Account(BaseModel):
    """Public view of a user row; never carries the hash or the salt."""

    id: str
    username: str
    email: str
    role: str = "user"
    is_active: bool = True
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

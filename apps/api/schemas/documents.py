from datetime import datetime

from pydantic import BaseModel, Field

from schemas.registrations import ConsentProgressOut


class RecordSignatureIn(BaseModel):
    template_id: str = Field(min_length=1, max_length=64)
    document_id: str = Field(min_length=1, max_length=128)
    event_id: str | None = None
    user_id: str | None = None
    child_user_id: str | None = None
    signer_context: str | None = None
    signer_email: str | None = Field(default=None, max_length=320)
    type: str | None = None


class SignedDocumentOut(BaseModel):
    id: str
    template_id: str
    user_id: str
    signer_role: str
    host_id: str | None
    event_id: str | None
    status: str
    signed_at: datetime | None

    class Config:
        from_attributes = True


class RecordSignatureOut(BaseModel):
    ok: bool = True
    replayed: bool
    signed_document: SignedDocumentOut
    registrations: list[ConsentProgressOut]

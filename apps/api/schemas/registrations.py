from pydantic import BaseModel, model_validator


class ConsentSyncRequest(BaseModel):
    child_user_id: str | None = None
    parent_user_id: str | None = None
    user_id: str | None = None

    @model_validator(mode="after")
    def _one_registrant(self):
        if bool(self.child_user_id) == bool(self.user_id):
            raise ValueError("exactly one of child_user_id or user_id is required")
        if self.parent_user_id and not self.child_user_id:
            raise ValueError("parent_user_id is only valid with child_user_id")
        return self


class OutstandingSignatureOut(BaseModel):
    template_id: str
    signer_context: str
    label: str


class ConsentProgressOut(BaseModel):
    registration_id: str
    event_id: str
    registrant_id: str
    parent_id: str | None
    is_child_registration: bool
    status: str
    consent_status: str
    satisfied_template_ids: list[str]
    outstanding: list[OutstandingSignatureOut]
    changed: bool | None = None


class ConsentSyncOut(BaseModel):
    updated: bool
    registration: ConsentProgressOut | None = None

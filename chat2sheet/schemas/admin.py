# chat2sheet/schemas/admin.py - Request bodies for the admin ledger API
from pydantic import AliasChoices, BaseModel, Field, field_validator
from typing import Any, Dict, Optional
import json

from chat2sheet.schemas.changeset import ChangeSet, FeeSeed, InstallmentSeed, StudentSeed


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


class StudentCreate(BaseModel):
    name: str
    class_name: str = Field(validation_alias=AliasChoices("class", "class_name"))
    parent_name: str = ""
    parent_no: str = ""
    phone_no: str = ""
    email: str = ""
    total_fees: str = "0"

    @field_validator("parent_no", "phone_no", "total_fees", mode="before")
    @classmethod
    def stringify(cls, v):
        return _text(v)

    def to_change_set(self) -> ChangeSet:
        return ChangeSet(
            Students=[StudentSeed(
                name=self.name,
                class_name=self.class_name,
                parent_name=self.parent_name,
                parent_no=self.parent_no,
                phone_no=self.phone_no,
                email=self.email,
            )],
            Fees=[FeeSeed(
                name=self.name,
                class_name=self.class_name,
                total_fees=self.total_fees or "0",
                balance=self.total_fees or "0",
            )],
        )


class InstallmentCreate(BaseModel):
    stud_id: str = ""
    name: str = ""
    installment_amount: str = Field(validation_alias=AliasChoices("installment_amount", "amount"))
    date: str = ""
    mode: str = ""
    remarks: str = ""
    recorded_by: str = ""

    @field_validator("installment_amount", mode="before")
    @classmethod
    def stringify(cls, v):
        return _text(v)

    def to_change_set(self) -> ChangeSet:
        return ChangeSet(Installments=[InstallmentSeed(**self.model_dump())])


class LogCreate(BaseModel):
    action: str
    stud_id: str = ""
    raw_message: str = ""
    parsed_json: Optional[Any] = None
    result: str = "success"
    error_msg: str = ""
    performed_by: str = "admin_api"

    def parsed_json_text(self) -> str:
        if self.parsed_json is None:
            return ""
        if isinstance(self.parsed_json, str):
            return self.parsed_json
        return json.dumps(self.parsed_json, ensure_ascii=False)


class AdminResponse(BaseModel):
    success: bool
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)

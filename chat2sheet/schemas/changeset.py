# chat2sheet/schemas/changeset.py - Parsed, not-yet-committed write requests
"""
ChangeSet is the array-shaped document the parser produces:

    {"Students": [...], "Fees": [...], "Installments": [...], "Logs": [...]}

Every array is always present. Downstream code that applies a change set
should iterate ``ChangeSet.intents()``, which pairs each new student with its
fee seed and yields one explicitly tagged intent per write.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Annotated, Any, List, Literal, Optional, Union
import json

from chat2sheet.schemas.ledger import ID_PREFIXES, RESULT_FAIL, STUDENTS, parse_id_number


def audit_stud_id(value: Any) -> str:
    """The value as an upper-case STU id, or "" when it is a name or anything else"""
    text = "" if value is None else str(value).strip().upper()
    return text if parse_id_number(ID_PREFIXES[STUDENTS], text) is not None else ""


class SeedModel(BaseModel):
    """Loose row emitted by the LLM; every value is kept as text"""

    class Config:
        populate_by_name = True

    @model_validator(mode="before")
    @classmethod
    def stringify_values(cls, data: Any) -> Any:
        # LLMs emit numbers for amounts and phone numbers; the schema is all text
        if isinstance(data, dict):
            return {
                key: ("" if value is None else value if isinstance(value, str) else str(value))
                for key, value in data.items()
                if not isinstance(value, (dict, list))
            }
        return data


class StudentSeed(SeedModel):
    name: str = ""
    class_name: str = Field(default="", alias="class")
    parent_name: str = ""
    parent_no: str = ""
    phone_no: str = ""
    email: str = ""


class FeeSeed(SeedModel):
    stud_id: str = ""
    name: str = ""
    class_name: str = Field(default="", alias="class")
    total_fees: str = ""
    total_paid: str = "0"
    balance: str = ""
    status: str = "unpaid"


class InstallmentSeed(SeedModel):
    stud_id: str = ""
    name: str = ""
    class_name: str = Field(default="", alias="class")
    installment_amount: str = ""
    date: str = ""
    mode: str = ""
    remarks: str = ""
    recorded_by: str = ""


class LogSeed(SeedModel):
    action: str = ""
    stud_id: str = ""
    raw_message: str = ""
    parsed_json: str = ""
    result: str = ""
    error_msg: str = ""
    performed_by: str = ""


# ============================================================================
# Tagged intents
# ============================================================================

class NewStudentIntent(BaseModel):
    """Create a student together with the opening fee account"""
    kind: Literal["new_student"] = "new_student"
    student: StudentSeed
    total_fees: str = ""


class InstallmentIntent(BaseModel):
    """Record one payment against an existing (or same-batch) student"""
    kind: Literal["installment"] = "installment"
    stud_id: str = ""
    name: str = ""
    installment_amount: str
    date: str = ""
    mode: str = ""
    remarks: str = ""
    recorded_by: str = ""

    @property
    def target(self) -> str:
        return self.stud_id or self.name


WriteIntent = Annotated[Union[NewStudentIntent, InstallmentIntent], Field(discriminator="kind")]


class ChangeSet(BaseModel):
    Students: List[StudentSeed] = Field(default_factory=list)
    Fees: List[FeeSeed] = Field(default_factory=list)
    Installments: List[InstallmentSeed] = Field(default_factory=list)
    Logs: List[LogSeed] = Field(default_factory=list)

    @field_validator("Students", "Fees", "Installments", "Logs", mode="before")
    @classmethod
    def default_to_list(cls, v):
        if v is None:
            return []
        if isinstance(v, dict):
            return [v]
        return v

    @classmethod
    def parse_failure(cls, raw_message: str, error: str) -> "ChangeSet":
        """Change set carrying only the audit row for a failed parse"""
        return cls(Logs=[LogSeed(
            action="parse_error",
            raw_message=raw_message or "",
            result=RESULT_FAIL,
            error_msg=error,
            performed_by="ai_parser",
        )])

    @classmethod
    def for_installment(cls, **fields: str) -> "ChangeSet":
        return cls(Installments=[InstallmentSeed(**fields)])

    def is_empty(self) -> bool:
        """Nothing to write: no students and no installments"""
        return not self.Students and not self.Installments

    def intents(self) -> List[WriteIntent]:
        """Students first, then installments, each as a tagged intent"""
        result: List[WriteIntent] = []
        for index, student in enumerate(self.Students):
            fee = self._fee_for(student, index)
            total_fees = ""
            if fee is not None:
                total_fees = fee.total_fees or fee.balance
            result.append(NewStudentIntent(student=student, total_fees=total_fees))

        for seed in self.Installments:
            result.append(InstallmentIntent(
                stud_id=seed.stud_id.strip(),
                name=seed.name.strip(),
                installment_amount=seed.installment_amount.strip(),
                date=seed.date,
                mode=seed.mode,
                remarks=seed.remarks,
                recorded_by=seed.recorded_by,
            ))
        return result

    def _fee_for(self, student: StudentSeed, index: int) -> Optional[FeeSeed]:
        wanted = student.name.strip().lower()
        for fee in self.Fees:
            if wanted and fee.name.strip().lower() == wanted:
                return fee
        if index < len(self.Fees):
            return self.Fees[index]
        return None

    def audit_stud_id(self) -> str:
        """Student id for audit rows: the first installment naming a real STU id, else blank"""
        for seed in self.Installments:
            stud_id = audit_stud_id(seed.stud_id)
            if stud_id:
                return stud_id
        return ""

    def snapshot(self) -> str:
        return json.dumps(self.model_dump(by_alias=True), ensure_ascii=False)

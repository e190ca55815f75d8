# chat2sheet/services/validator.py - Structural checks before a write reaches confirmation
from typing import Optional
from pydantic import BaseModel

from chat2sheet.schemas.changeset import ChangeSet


MISSING_STUDENT_REFERENCE = (
    '❌ *Invalid Request*\n\n'
    'To add an installment, please provide either:\n'
    '• Student ID (e.g., STU001)\n'
    '• Student name\n\n'
    'Example: "STU001 paid 100" or "Rahul paid 100"'
)

MISSING_AMOUNT = (
    '❌ *Invalid Request*\n\n'
    'Please specify a valid installment amount.\n\n'
    'Example: "STU001 paid 100"'
)

MISSING_STUDENT_FIELDS = (
    '❌ *Invalid Request*\n\n'
    'To add a new student, please provide:\n'
    '• Student name\n'
    '• Class\n\n'
    'Example: "Add student Rahul class 10"'
)


class ValidationResult(BaseModel):
    is_valid: bool
    error_message: Optional[str] = None


def validate_change_set(change_set: ChangeSet) -> ValidationResult:
    """
    Reject structurally invalid change sets. Pure, no I/O.

    Installments need a stud_id or name and an amount other than "0";
    students need a name and a class. The first failure wins.
    """
    for installment in change_set.Installments:
        if not installment.stud_id.strip() and not installment.name.strip():
            return ValidationResult(is_valid=False, error_message=MISSING_STUDENT_REFERENCE)

        amount = installment.installment_amount.strip()
        if not amount or amount == "0":
            return ValidationResult(is_valid=False, error_message=MISSING_AMOUNT)

    for student in change_set.Students:
        if not student.name.strip() or not student.class_name.strip():
            return ValidationResult(is_valid=False, error_message=MISSING_STUDENT_FIELDS)

    return ValidationResult(is_valid=True)

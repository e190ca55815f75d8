"""Tests for change set validation and the ChangeSet document"""

from chat2sheet.schemas.changeset import ChangeSet, InstallmentIntent, NewStudentIntent
from chat2sheet.services.validator import (
    MISSING_AMOUNT, MISSING_STUDENT_FIELDS, MISSING_STUDENT_REFERENCE, validate_change_set,
)


class TestValidateChangeSet:
    def test_installment_without_student_reference(self):
        change_set = ChangeSet.model_validate({"Installments": [{"installment_amount": "500"}]})
        result = validate_change_set(change_set)
        assert not result.is_valid
        assert result.error_message == MISSING_STUDENT_REFERENCE

    def test_installment_with_zero_amount(self):
        change_set = ChangeSet.model_validate({"Installments": [{"stud_id": "STU001", "installment_amount": "0"}]})
        result = validate_change_set(change_set)
        assert not result.is_valid
        assert result.error_message == MISSING_AMOUNT

    def test_installment_with_missing_amount(self):
        change_set = ChangeSet.model_validate({"Installments": [{"name": "Rahul"}]})
        assert validate_change_set(change_set).error_message == MISSING_AMOUNT

    def test_student_without_class(self):
        change_set = ChangeSet.model_validate({"Students": [{"name": "Rahul"}]})
        result = validate_change_set(change_set)
        assert not result.is_valid
        assert result.error_message == MISSING_STUDENT_FIELDS

    def test_installment_errors_are_reported_first(self):
        change_set = ChangeSet.model_validate({
            "Students": [{"name": "Rahul"}],
            "Installments": [{"installment_amount": "100"}],
        })
        assert validate_change_set(change_set).error_message == MISSING_STUDENT_REFERENCE

    def test_valid_change_set(self):
        change_set = ChangeSet.model_validate({
            "Students": [{"name": "Rahul", "class": "10"}],
            "Installments": [{"name": "Rahul", "installment_amount": 1500}],
        })
        result = validate_change_set(change_set)
        assert result.is_valid
        assert result.error_message is None


class TestChangeSet:
    def test_missing_arrays_default_to_empty(self):
        change_set = ChangeSet.model_validate({"Students": None})
        assert change_set.Students == []
        assert change_set.Fees == []
        assert change_set.Installments == []
        assert change_set.Logs == []
        assert change_set.is_empty()

    def test_numbers_from_the_model_become_text(self):
        change_set = ChangeSet.model_validate({
            "Students": [{"name": "Asha", "class": 7, "parent_no": 9876543210}],
        })
        assert change_set.Students[0].class_name == "7"
        assert change_set.Students[0].parent_no == "9876543210"

    def test_intents_pair_students_with_fees(self):
        change_set = ChangeSet.model_validate({
            "Students": [{"name": "Asha", "class": "7"}, {"name": "Ravi", "class": "8"}],
            "Fees": [{"name": "Ravi", "total_fees": "30000"}, {"name": "Asha", "total_fees": "25000"}],
            "Installments": [{"name": "Asha", "installment_amount": "5000"}],
        })
        intents = change_set.intents()
        assert [type(i) for i in intents] == [NewStudentIntent, NewStudentIntent, InstallmentIntent]
        assert intents[0].total_fees == "25000"
        assert intents[1].total_fees == "30000"
        assert intents[2].target == "Asha"

    def test_parse_failure_carries_one_log(self):
        change_set = ChangeSet.parse_failure("gibberish", "No JSON object in response")
        assert change_set.is_empty()
        assert len(change_set.Logs) == 1
        log = change_set.Logs[0]
        assert log.action == "parse_error"
        assert log.result == "fail"
        assert log.raw_message == "gibberish"

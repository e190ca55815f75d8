# chat2sheet/api/routers/ledger.py - Admin ledger routes guarded by X-API-Key
from fastapi import APIRouter, Depends, HTTPException, status
import logging

from chat2sheet.api.deps.services import (
    get_ledger_store, get_mutation_service, get_notification_service, require_admin_key,
)
from chat2sheet.schemas.admin import AdminResponse, InstallmentCreate, LogCreate, StudentCreate
from chat2sheet.core.config import settings
from chat2sheet.schemas.ledger import RESULT_SUCCESS, format_amount
from chat2sheet.services.ledger_service import LedgerMutationService, summarize_for_admin
from chat2sheet.services.ledger_store import LedgerStore, LedgerStoreError
from chat2sheet.services.notification_service import NotificationService
from chat2sheet.services.validator import validate_change_set

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_key)])

ADMIN_ACTOR = "admin_api"


def _errors(result) -> str:
    return "; ".join(row.error for row in result.students + result.installments if row.error)


@router.post("/students/add", response_model=AdminResponse, status_code=status.HTTP_201_CREATED)
async def add_student(
    data: StudentCreate,
    mutations: LedgerMutationService = Depends(get_mutation_service),
):
    change_set = data.to_change_set()
    validation = validate_change_set(change_set)
    if not validation.is_valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=validation.error_message)

    result = await mutations.apply_change_set(change_set, actor=ADMIN_ACTOR, raw_message=f"Student {data.name} created")
    created = [row for row in result.students if row.success]
    if not created:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_errors(result))

    row = created[0]
    return AdminResponse(
        success=result.success,
        message=f"Student {row.name} added successfully",
        data={"stud_id": row.stud_id, "name": row.name, "class": data.class_name},
    )


@router.post("/installments/add", response_model=AdminResponse, status_code=status.HTTP_201_CREATED)
async def add_installment(
    data: InstallmentCreate,
    mutations: LedgerMutationService = Depends(get_mutation_service),
    notifications: NotificationService = Depends(get_notification_service),
):
    change_set = data.to_change_set()
    validation = validate_change_set(change_set)
    if not validation.is_valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=validation.error_message)

    result = await mutations.apply_change_set(change_set, actor=data.recorded_by or ADMIN_ACTOR)
    recorded = result.recorded_installments
    if not recorded:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_errors(result))

    row = recorded[0]
    receipt = await notifications.send_payment_receipt(row.stud_id, row.installment, row.fee_account)

    data_out = {
        "inst_id": row.record_id,
        "stud_id": row.stud_id,
        "student_name": row.name,
        "amount": format_amount(row.amount),
        "date": row.installment.date,
        "mode": row.installment.mode,
        "recorded_by": row.installment.recorded_by,
        "receipt_sent": receipt.success,
    }
    if row.fee_account is not None:
        data_out["fees"] = summarize_for_admin(row.fee_account)

    return AdminResponse(
        success=result.success,
        message=f"Installment of {settings.CURRENCY_SYMBOL}{format_amount(row.amount)} added for {row.name}" if result.success else _errors(result),
        data=data_out,
    )


@router.put("/fees-summary/{stud_id}", response_model=AdminResponse)
async def update_fees_summary(
    stud_id: str,
    ledger: LedgerStore = Depends(get_ledger_store),
    mutations: LedgerMutationService = Depends(get_mutation_service),
):
    """Recompute a fee account from its installments"""
    try:
        account = await mutations.recompute_fee_account(stud_id)
    except LedgerStoreError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    await ledger.append_log(
        action="update_fees_summary",
        result=RESULT_SUCCESS,
        stud_id=account.stud_id,
        raw_message=f"Fees summary recomputed for {account.stud_id}",
        parsed_json=account.model_dump_json(by_alias=True),
        performed_by=ADMIN_ACTOR,
    )
    return AdminResponse(
        success=True,
        message=f"Fees summary updated for {account.stud_id}",
        data=summarize_for_admin(account),
    )


@router.post("/logs/add", response_model=AdminResponse, status_code=status.HTTP_201_CREATED)
async def add_log(data: LogCreate, ledger: LedgerStore = Depends(get_ledger_store)):
    try:
        entry = await ledger.append_log(
            action=data.action,
            result=data.result,
            stud_id=data.stud_id,
            raw_message=data.raw_message,
            parsed_json=data.parsed_json_text(),
            error_msg=data.error_msg,
            performed_by=data.performed_by,
        )
    except LedgerStoreError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return AdminResponse(success=True, message=f"Log {entry.log_id} added", data=entry.to_dict())

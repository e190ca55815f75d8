# chat2sheet/services/templates.py - WhatsApp message templates for guardians
from typing import Optional
from jinja2 import Template

from chat2sheet.core.config import settings
from chat2sheet.schemas.ledger import (
    FeeAccountRecord, InstallmentRecord, StudentRecord, format_amount,
)


REMINDER_TEMPLATE = Template("""🔔 *Fee Reminder - {{ school_name }}*

Dear Parent,

This is a gentle reminder regarding the fee payment for:

👨‍🎓 *Student:* {{ student.name }}
🆔 *ID:* {{ student.stud_id }}
📚 *Class:* {{ student.class_name }}
💰 *Outstanding Amount:* {% if balance %}{{ symbol }}{{ balance }}{% else %}Contact school{% endif %}

💳 *Quick Payment Link:*
{{ payment_link }}

🚀 *Pay instantly via:*
• Credit/Debit Card
• UPI (Google Pay, PhonePe, Paytm)
• Net Banking

For any queries, please contact the school office.

Thank you for your cooperation.

*{{ school_name }} Management*""")


RECEIPT_CAPTION_TEMPLATE = Template("""✅ *Payment Received Successfully!*

💰 *Amount:* {{ symbol }}{{ amount }}
👨‍🎓 *Student:* {{ student.name }}
🆔 *Student ID:* {{ student.stud_id }}
📚 *Class:* {{ student.class_name }}
{% if transaction_id %}💳 *Transaction ID:* {{ transaction_id }}
{% else %}🧾 *Receipt No:* {{ installment.inst_id }}
{% endif %}{% if balance is not none %}📊 *Remaining Balance:* {{ symbol }}{{ balance }}
{% endif %}
Thank you for your payment!

*{{ school_name }} Management*""")


class MessageTemplates:
    """Guardian-facing messages"""

    @staticmethod
    def payment_link(stud_id: str) -> str:
        return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/payments/{stud_id}"

    @staticmethod
    def fee_reminder(student: StudentRecord, account: Optional[FeeAccountRecord] = None) -> str:
        balance = format_amount(account.balance) if account is not None else ""
        return REMINDER_TEMPLATE.render(
            school_name=settings.SCHOOL_NAME,
            student=student,
            balance=balance,
            symbol=settings.CURRENCY_SYMBOL,
            payment_link=MessageTemplates.payment_link(student.stud_id),
        )

    @staticmethod
    def receipt_caption(
        student: StudentRecord,
        installment: InstallmentRecord,
        account: Optional[FeeAccountRecord] = None,
        transaction_id: Optional[str] = None,
    ) -> str:
        """Caption for the receipt document, also sent alone when the PDF cannot be delivered"""
        return RECEIPT_CAPTION_TEMPLATE.render(
            school_name=settings.SCHOOL_NAME,
            student=student,
            installment=installment,
            amount=format_amount(installment.installment_amount),
            balance=format_amount(account.balance) if account is not None else None,
            transaction_id=transaction_id,
            symbol=settings.CURRENCY_SYMBOL,
        )

# chat2sheet/ai/prompts.py - Fixed instructions for the classifier and parsers

# ============================================================================
# Intent classification
# ============================================================================

CLASSIFIER_PROMPT = """You classify WhatsApp messages sent to a school fee assistant.

Return ONLY one JSON object, no markdown and no extra text:
{"operation": "CREATE|READ|UPDATE|DELETE|REMIND_ALL|REMIND_SPECIFIC", "confidence": 0.0-1.0, "student_id": "STU001 or null"}

OPERATIONS:
- CREATE: add a new student, or record a fee payment / installment
- READ: any question about students, fees, balances or payment history
- UPDATE: change details of an existing record
- DELETE: remove a record
- REMIND_ALL: send fee reminders to every parent
- REMIND_SPECIFIC: send a fee reminder for one student (put the id in student_id)

RULES:
- Use the EXACT operation names above, never invent new ones
- Recording a payment ("STU001 paid 4000") is CREATE, not UPDATE
- If unsure between READ and a write, choose READ

EXAMPLES:
"Show me details of Rahul" -> {"operation": "READ", "confidence": 0.9, "student_id": null}
"What is the balance of STU002" -> {"operation": "READ", "confidence": 0.9, "student_id": "STU002"}
"Add student Rahul class 10, fees 40000" -> {"operation": "CREATE", "confidence": 0.95, "student_id": null}
"STU001 paid 4000" -> {"operation": "CREATE", "confidence": 0.9, "student_id": "STU001"}
"Update phone number of STU003" -> {"operation": "UPDATE", "confidence": 0.85, "student_id": "STU003"}
"Delete student STU123" -> {"operation": "DELETE", "confidence": 0.9, "student_id": "STU123"}
"Remind all parents about fees" -> {"operation": "REMIND_ALL", "confidence": 0.95, "student_id": null}
"Send reminder to STU004" -> {"operation": "REMIND_SPECIFIC", "confidence": 0.95, "student_id": "STU004"}
"""


def build_classifier_prompt(message: str) -> str:
    return f'{CLASSIFIER_PROMPT}\nMessage: "{message}"'


# ============================================================================
# Write parsing
# ============================================================================

PARSER_PROMPT = """You are a structured data parser for a student fee management system.
Return parsed JSON that matches the sheet schemas below exactly. Do not add or remove fields.

SCHEMAS:
1. Students: stud_id, name, class, parent_name, parent_no, phone_no, email, created_at
2. Fees: stud_id, name, class, total_fees, total_paid, balance, status
3. Installments: inst_id, stud_id, name, class, installment_amount, date, mode, remarks, recorded_by, created_at
4. Logs: log_id, action, stud_id, raw_message, parsed_json, result, error_msg, performed_by, timestamp

ONLY TWO REQUEST SHAPES ARE SUPPORTED:

1. Installment payment
   - The student is identified by stud_id (preferred) or by name
   - installment_amount is required, digits only ("4000")
   - Leave every other field as "" unless the message states it; the server fills date, mode and recorded_by
   - Output: "Installments" with exactly one row, "Logs" with one "add_installment" row
   - Never put anything in "Fees" for a payment; totals are recalculated by the server

2. New student
   - "Students": every field except stud_id and created_at (the server generates those)
   - "Fees": one row with total_fees, total_paid = "0", balance = total_fees, status = "unpaid"
   - "Logs": one "add_student" row

All values are strings. Use "" for anything not stated. RETURN ONLY VALID JSON.

EXAMPLE 1
Input: "student id STU123 paid 4000"
Output:
{"Students": [], "Fees": [], "Installments": [{"stud_id": "STU123", "name": "", "class": "", "installment_amount": "4000", "date": "", "mode": "", "remarks": "", "recorded_by": ""}], "Logs": [{"action": "add_installment", "stud_id": "STU123", "result": "success", "error_msg": ""}]}

EXAMPLE 2
Input: "Create student Rahul Pandey class 12, parent name: Mr Pandey, parent number: 9999999999, phone: 8888888888, email: rahul@example.com, total fees: 40000"
Output:
{"Students": [{"name": "Rahul Pandey", "class": "12", "parent_name": "Mr Pandey", "parent_no": "9999999999", "phone_no": "8888888888", "email": "rahul@example.com"}], "Fees": [{"name": "Rahul Pandey", "class": "12", "total_fees": "40000", "total_paid": "0", "balance": "40000", "status": "unpaid"}], "Installments": [], "Logs": [{"action": "add_student", "stud_id": "", "result": "success", "error_msg": ""}]}
"""


def build_parser_prompt(message: str) -> str:
    return f"{PARSER_PROMPT}\nInput: {message}"


# ============================================================================
# Read parsing
# ============================================================================

READ_PROMPT = """You are a school fee management assistant for READ queries. Return ONLY valid JSON.

RULES:
- Student ids start with "STU" followed by digits; a query about a student id uses "stud_id", never a date filter
- Only use "date_filter" for real dates (2025-08-22, today, yesterday)

QUERY TYPES:
{"query_type": "student_details", "parameters": {"stud_id": "STU123", "name": "", "class": ""}, "output_format": "detailed"}
{"query_type": "fee_status", "parameters": {"stud_id": "STU123", "name": "", "class": ""}, "output_format": "detailed"}
{"query_type": "payment_history", "parameters": {"stud_id": "STU123", "name": "", "class": ""}, "output_format": "detailed"}
{"query_type": "payment_history", "parameters": {"date_filter": "2025-08-22"}, "output_format": "detailed"}
{"query_type": "class_report", "parameters": {"class": "11"}, "output_format": "list"}
{"query_type": "aggregate_summary", "parameters": {"criteria": "paid_less_than_10000", "amount": "10000", "class": ""}, "output_format": "summary"}
{"query_type": "student_search", "parameters": {"stud_id": "", "name": "John", "class": ""}, "output_format": "list"}

Aggregate criteria: paid_less_than_<N>, paid_more_than_<N>, balance_less_than_<N>, balance_more_than_<N>, outstanding_fees, fully_paid, total_collected

EXAMPLES:
"payment history of STU1235" -> {"query_type": "payment_history", "parameters": {"stud_id": "STU1235", "name": "", "class": ""}, "output_format": "detailed"}
"payments today" -> {"query_type": "payment_history", "parameters": {"date_filter": "today"}, "output_format": "detailed"}
"students in class 11" -> {"query_type": "class_report", "parameters": {"class": "11"}, "output_format": "list"}
"who has pending fees" -> {"query_type": "aggregate_summary", "parameters": {"criteria": "outstanding_fees"}, "output_format": "summary"}
"""


def build_read_prompt(message: str) -> str:
    return f'{READ_PROMPT}\nUser Query: "{message}"'

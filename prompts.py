SYSTEM_PROMPT = (
    "You are a financial data extraction expert. Extract every transaction from the "
    "attached bank statement pages. Return only valid JSON matching the schema."
)

# Compact keys keep the response small enough for multi-page chunks:
# b = bank name, h = account holder, tx = transactions,
# d = date, t = description, v = signed amount, c = category
EXTRACTION_SCHEMA = {
    "type": "object",
    "properties": {
        "b": {"type": ["string", "null"], "description": "Bank name"},
        "h": {"type": ["string", "null"], "description": "Account holder name"},
        "tx": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "d": {"type": "string", "description": "YYYY-MM-DD"},
                    "t": {"type": "string", "description": "Transaction description"},
                    "v": {"type": "number", "description": "Float. Negative = outflow."},
                    "c": {"type": "string", "description": "Simple category"},
                },
                "required": ["d", "t", "v", "c"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["b", "h", "tx"],
    "additionalProperties": False,
}

RESPONSE_FORMAT = {
    "type": "json_schema",
    "json_schema": {
        "name": "bank_statement_extraction",
        "strict": True,
        "schema": EXTRACTION_SCHEMA,
    },
}


def get_extraction_prompt(chunk_num: int, total_chunks: int) -> str:
    return f"""
    The attached PDF is part {chunk_num} of {total_chunks} of the uploaded bank statement pages.

    ### **Your Task**:
    1. **Header fields**:
       - **"b"**: The bank name if it is printed on these pages, otherwise null.
       - **"h"**: The account holder's name if it is printed on these pages, otherwise null.

    2. **Transactions ("tx")**, one entry per transaction row, in the order they appear:
       - **"d"**: Transaction date as YYYY-MM-DD. Infer the year from the statement period when the row omits it.
       - **"t"**: The description exactly as it appears.
       - **"v"**: The amount as a number, without currency symbols or thousands separators.
       - **"c"**: A short category label (e.g. Salary, Transfer, Food, Transport, Utilities, Shopping, Fees).

    3. **Sign Rules for "v"**:
       - Debits, withdrawals, payments, purchases, fees, charges, "DR", "-" or "D" markers → **negative**.
       - Credits, deposits, received transfers, refunds, interest earned, "CR", "+" or "C" markers → **positive**.
       - When the statement has separate debit and credit columns, the column decides the sign.

    4. **Exclusions**:
       - Skip opening balance, closing balance, running balance, subtotal and total lines.
       - Skip headers, footers, page numbers and column headings.
       - If these pages have no transactions, return an empty "tx" array.
    """

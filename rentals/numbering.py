import re

TRAILING_DIGITS = re.compile(r"^(.*?)(\d+)$")
BILL_NUMBER = re.compile(r"BILL-(\d+)")

BILL_PREFIX = "BILL-"
BILL_NUMBER_WIDTH = 4


def suggest_next_number(last_number):
    """Suggest the number that follows `last_number`.

    The whole trailing run of digits is incremented and zero padding is kept
    ("A099" -> "A100", "B007" -> "B008", "9" -> "10"). A number without
    trailing digits gets "1" appended, and an empty history starts at "1".
    """
    if not last_number:
        return "1"

    match = TRAILING_DIGITS.match(last_number)
    if match is None:
        return f"{last_number}1"

    prefix, digits = match.groups()
    return f"{prefix}{int(digits) + 1:0{len(digits)}d}"


def next_bill_number(last_bill_number):
    if last_bill_number:
        match = BILL_NUMBER.search(last_bill_number)
        if match:
            return f"{BILL_PREFIX}{int(match.group(1)) + 1:0{BILL_NUMBER_WIDTH}d}"
    return f"{BILL_PREFIX}{1:0{BILL_NUMBER_WIDTH}d}"

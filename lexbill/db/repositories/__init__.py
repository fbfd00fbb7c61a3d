"""Database repository layer, one repo per table."""

from lexbill.db.repositories.case_repo import CaseRepo
from lexbill.db.repositories.counter_repo import CounterRepo
from lexbill.db.repositories.document_repo import DocumentRepo
from lexbill.db.repositories.email_repo import EmailAttemptRepo

__all__ = [
    "CaseRepo",
    "CounterRepo",
    "DocumentRepo",
    "EmailAttemptRepo",
]

# lifecycle/access_policy.py
# ============================================================================
# PAID Q&A SERVICE — ACCESS POLICY
# ============================================================================
# A caller may view a question when they own it, when their token email
# matches the submitter email, or when they are an admin. The email match
# trusts token claims and is a known weak point; anonymous holders of a
# question id are protected only by the id being unguessable.
# ============================================================================

from schemas.question_models import Caller, Question
from lifecycle.errors import AccessDenied


def can_view(caller: Caller, question: Question) -> bool:
    if caller.is_admin:
        return True
    if caller.id is not None and caller.id == question.user_id:
        return True
    if caller.email and caller.email == question.email:
        return True
    return False


def can_mutate(caller: Caller, question: Question = None) -> bool:
    return caller.is_admin


def require_view(caller: Caller, question: Question) -> None:
    if not can_view(caller, question):
        raise AccessDenied("Access denied")


def require_admin(caller: Caller) -> None:
    if not can_mutate(caller):
        raise AccessDenied("Admin privileges required")

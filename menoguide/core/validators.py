"""
Validation rules for the signup wizard steps and the final submission.
"""
import re
from typing import List, Optional

from .signup_state import (
    MenopausePhase,
    PasswordStrength,
    SignupDraft,
    ValidationResult,
)


EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_SPECIAL_CHARS = '!@#$%^&*(),.?":{}|<>'
PASSWORD_MIN_LENGTH = 8
STRONG_PASSWORD_SCORE = 4

INVALID_EMAIL_MESSAGE = "Please enter a valid email address"


def _is_blank(value: Optional[str]) -> bool:
    return not value or not value.strip()


def evaluate_password_strength(password: str) -> PasswordStrength:
    """
    Scores a password from 0 to 5, one point per satisfied criterion.

    Feedback lists the unmet criteria in a fixed order so the UI can show
    them as a checklist.
    """
    password = password or ""
    feedback: List[str] = []
    score = 0

    if len(password) >= PASSWORD_MIN_LENGTH:
        score += 1
    else:
        feedback.append("At least 8 characters")

    if re.search(r"[A-Z]", password):
        score += 1
    else:
        feedback.append("At least one uppercase letter")

    if re.search(r"[a-z]", password):
        score += 1
    else:
        feedback.append("At least one lowercase letter")

    if re.search(r"\d", password):
        score += 1
    else:
        feedback.append("At least one number")

    if any(ch in PASSWORD_SPECIAL_CHARS for ch in password):
        score += 1
    else:
        feedback.append("At least one special character")

    return PasswordStrength(
        score=score,
        feedback=feedback,
        is_strong=score >= STRONG_PASSWORD_SCORE,
    )


def validate_email(email: str) -> ValidationResult:
    is_valid = bool(email) and EMAIL_REGEX.match(email) is not None
    return ValidationResult(
        is_valid=is_valid,
        errors=[] if is_valid else [INVALID_EMAIL_MESSAGE],
    )


def _required_identity_errors(draft: SignupDraft) -> List[str]:
    errors: List[str] = []
    if _is_blank(draft.first_name):
        errors.append("First name is required")
    if _is_blank(draft.last_name):
        errors.append("Last name is required")
    if _is_blank(draft.email):
        errors.append("Email is required")
    if _is_blank(draft.password):
        errors.append("Password is required")
    return errors


def _cycle_info_errors(draft: SignupDraft) -> List[str]:
    cycle_info = draft.cycle_info
    errors: List[str] = []
    if not cycle_info or not cycle_info.average_cycle_length:
        errors.append("Average cycle length is required")
    if not cycle_info or not cycle_info.period_duration:
        errors.append("Period duration is required")
    if not cycle_info or not cycle_info.last_period_date:
        errors.append("Last period date is required")
    return errors


def validate_step(step: int, draft: SignupDraft) -> ValidationResult:
    """
    Validates the data collected by one wizard step.

    Steps 4 to 6 never block; they only warn when nothing was selected.
    Unknown step ids are considered valid.
    """
    errors: List[str] = []
    warnings: List[str] = []

    if step == 1:
        errors.extend(_required_identity_errors(draft))
        if draft.email:
            errors.extend(validate_email(draft.email).errors)
        if draft.password and not evaluate_password_strength(draft.password).is_strong:
            warnings.append("Consider strengthening your password")

    elif step == 2:
        if draft.menopause_phase is None:
            errors.append("Please select your menopause phase")

    elif step == 3:
        # only meaningful for pre-menopause, the step is hidden otherwise
        if draft.menopause_phase == MenopausePhase.PRE_MENOPAUSE:
            errors.extend(_cycle_info_errors(draft))

    elif step == 4:
        if not draft.symptoms or not draft.symptoms.has_any():
            warnings.append("Selecting symptoms helps us personalize your experience")

    elif step == 5:
        if not draft.concerns or not draft.concerns.has_any():
            warnings.append("Selecting concerns helps us provide relevant support")

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def validate_complete_signup(draft: SignupDraft) -> ValidationResult:
    """
    Authoritative check before submission, independent of the steps the
    user actually visited.
    """
    errors = _required_identity_errors(draft)
    warnings: List[str] = []

    if draft.menopause_phase is None:
        errors.append("Menopause phase is required")

    if draft.email:
        errors.extend(validate_email(draft.email).errors)

    if draft.password and not evaluate_password_strength(draft.password).is_strong:
        warnings.append("Consider strengthening your password for better security")

    if draft.menopause_phase == MenopausePhase.PRE_MENOPAUSE:
        if draft.cycle_info is None:
            errors.append("Cycle information is required for pre-menopause")
        else:
            errors.extend(_cycle_info_errors(draft))

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

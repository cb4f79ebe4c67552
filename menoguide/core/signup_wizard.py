import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from .signup_state import (
    SIGNUP_STEPS,
    CycleInfo,
    MenopausePhase,
    MenopauseSymptoms,
    PersonalConcerns,
    SignupDraft,
    UserPreferences,
    ValidationResult,
    WizardStatus,
)
from .validators import validate_complete_signup, validate_step
from .visibility import get_visible_steps
from ..session.progress_store import ProgressStore

logger = logging.getLogger(__name__)


class WizardStateError(ValueError):
    """
    The requested operation is not allowed in the current wizard state.
    """


class SignupCompleter(Protocol):
    async def complete_signup(self, draft: SignupDraft) -> Any: ...


class SignupWizard:
    """
    Drives the multi-step signup flow.

    Holds the current step, the accumulating draft and the last message to
    show. Step visibility is recomputed from the draft's phase on every
    operation, never cached. Every change to the draft is persisted through
    the ProgressStore so the user can resume later.
    """

    def __init__(
        self,
        progress_store: ProgressStore,
        account_service: SignupCompleter,
    ) -> None:
        self._progress_store = progress_store
        self._account_service = account_service
        self._status = WizardStatus.EDITING
        self._current_step = 1
        self._error: Optional[str] = None
        self._warnings: List[str] = []
        self._user_id: Optional[str] = None

        restored = progress_store.load_progress()
        if restored is not None:
            self._draft = restored
            if restored.menopause_phase is not None:
                # resume at the furthest step reached for that phase
                self._current_step = max(get_visible_steps(restored.menopause_phase))
            logger.info(
                f"Signup wizard resumed: key={progress_store.key}, "
                f"step={self._current_step}"
            )
        else:
            self._draft = SignupDraft()
            logger.debug(f"Signup wizard started: key={progress_store.key}")

    # State

    @property
    def status(self) -> WizardStatus:
        return self._status

    @property
    def current_step(self) -> int:
        return self._current_step

    @property
    def draft(self) -> SignupDraft:
        """
        A copy of the draft. Use update() or the setters to change it.
        """
        return copy.deepcopy(self._draft)

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def warnings(self) -> List[str]:
        return list(self._warnings)

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def visible_steps(self) -> List[int]:
        return get_visible_steps(self._draft.menopause_phase)

    @property
    def progress_percentage(self) -> float:
        if self._status != WizardStatus.EDITING:
            return 100.0
        visible = self.visible_steps
        index = visible.index(self._current_step)
        return (index + 1) / len(visible) * 100

    # Draft edits

    def update(self, **fields: Any) -> None:
        """
        Shallow merge of top-level draft fields, then persists the draft.
        Nested groups (cycle_info, symptoms, concerns, preferences) must be
        supplied whole.
        """
        self._apply(lambda draft: draft.merge(**fields))

    def set_identity(
        self,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> None:
        self._apply(lambda draft: draft.set_identity(first_name, last_name, email, password))

    def set_profile_image(self, image_ref: Optional[str]) -> None:
        self._apply(lambda draft: draft.set_profile_image(image_ref))

    def set_phase(self, phase: Optional[MenopausePhase]) -> None:
        self._apply(lambda draft: draft.set_phase(phase))

    def set_cycle_info(self, cycle_info: Optional[CycleInfo]) -> None:
        self._apply(lambda draft: draft.set_cycle_info(cycle_info))

    def set_symptoms(self, symptoms: Optional[MenopauseSymptoms]) -> None:
        self._apply(lambda draft: draft.set_symptoms(symptoms))

    def set_concerns(self, concerns: Optional[PersonalConcerns]) -> None:
        self._apply(lambda draft: draft.set_concerns(concerns))

    def set_preferences(self, preferences: Optional[UserPreferences]) -> None:
        self._apply(lambda draft: draft.set_preferences(preferences))

    def _apply(self, change: Callable[[SignupDraft], Any]) -> None:
        if self._status in (WizardStatus.SUBMITTING, WizardStatus.DONE):
            raise WizardStateError(f"Signup data cannot be changed while {self._status.value}")

        # changes land on a copy; a failing change leaves draft and step as they were
        candidate = copy.deepcopy(self._draft)
        change(candidate)

        previous_phase = self._draft.menopause_phase
        self._draft = candidate
        if candidate.menopause_phase != previous_phase:
            self._reconcile_current_step()

        self._progress_store.save_progress(self._draft)

    def _reconcile_current_step(self) -> None:
        """
        Moves the cursor to the nearest visible step at or below it when a
        phase change hid the current step.
        """
        visible = self.visible_steps
        if self._current_step in visible:
            return
        lower = [step for step in visible if step < self._current_step]
        new_step = max(lower) if lower else visible[0]
        logger.debug(
            f"Current step hidden by phase change: from={self._current_step}, "
            f"to={new_step}, phase={self._draft.menopause_phase}"
        )
        self._current_step = new_step

    # Navigation

    def validate_current_step(self) -> ValidationResult:
        return validate_step(self._current_step, self._draft)

    def next(self) -> bool:
        """
        Validates the current step and advances. Returns True when the
        wizard moved (to the next step or to the review screen).
        """
        if self._status != WizardStatus.EDITING:
            return False

        validation = self.validate_current_step()
        self._warnings = list(validation.warnings)
        if not validation.is_valid:
            self._error = validation.errors[0]
            logger.debug(
                f"Step validation failed: step={self._current_step}, error={self._error}"
            )
            return False

        self._error = None
        visible = self.visible_steps
        index = visible.index(self._current_step)
        if index < len(visible) - 1:
            self._current_step = visible[index + 1]
            logger.debug(f"Wizard advanced: step={self._current_step}")
        else:
            self._status = WizardStatus.REVIEWING
            logger.debug("Wizard entered review")
        return True

    def previous(self) -> bool:
        if self._status == WizardStatus.REVIEWING:
            self._status = WizardStatus.EDITING
            self._current_step = self.visible_steps[-1]
            self._error = None
            return True
        if self._status != WizardStatus.EDITING:
            return False

        visible = self.visible_steps
        index = visible.index(self._current_step)
        if index == 0:
            return False
        self._current_step = visible[index - 1]
        self._error = None
        return True

    def jump_to(self, step_id: int) -> bool:
        """
        Moves to any visible step, also from the review screen (edit action).
        Steps outside the visible list are ignored.
        """
        if self._status not in (WizardStatus.EDITING, WizardStatus.REVIEWING):
            return False
        if step_id not in self.visible_steps:
            return False

        self._status = WizardStatus.EDITING
        self._current_step = step_id
        self._error = None
        return True

    # Submission

    async def complete(self) -> Optional[str]:
        """
        Submits the draft from the review screen.

        Returns the new user id on success. On failure returns None, the
        wizard goes back to reviewing and `error` carries the message; the
        draft and the saved progress are kept so the user can retry.
        """
        if self._status == WizardStatus.SUBMITTING:
            logger.warning("complete() called while a submission is in flight, ignoring")
            return None
        if self._status != WizardStatus.REVIEWING:
            raise WizardStateError("Signup can only be completed from the review step")

        validation = validate_complete_signup(self._draft)
        self._warnings = list(validation.warnings)
        if not validation.is_valid:
            self._error = validation.errors[0]
            logger.debug(f"Final validation failed: error={self._error}")
            return None

        self._status = WizardStatus.SUBMITTING
        self._error = None
        try:
            result = await self._account_service.complete_signup(copy.deepcopy(self._draft))
        except Exception as e:
            self._status = WizardStatus.REVIEWING
            self._error = str(e)
            logger.warning(
                f"Signup submission failed: key={self._progress_store.key}, "
                f"error={type(e).__name__}: {e}"
            )
            return None

        self._progress_store.clear_progress()
        self._status = WizardStatus.DONE
        self._user_id = result.user_id
        logger.info(f"Signup completed: user_id={self._user_id}")
        return self._user_id

    def snapshot(self) -> Dict[str, Any]:
        """
        Serializable view for the presentation layer. The password is never
        included.
        """
        draft = self._draft.to_dict()
        draft.pop("password", None)
        draft["has_password"] = bool(self._draft.password)
        return {
            "status": self._status.value,
            "current_step": self._current_step,
            "visible_steps": self.visible_steps,
            "steps": [
                {"id": step.id, "title": step.title, "description": step.description}
                for step in SIGNUP_STEPS
                if step.id in self.visible_steps
            ],
            "progress_percentage": self.progress_percentage,
            "error": self._error,
            "warnings": list(self._warnings),
            "user_id": self._user_id,
            "draft": draft,
        }

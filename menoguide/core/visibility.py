from typing import Dict, List, Optional

from .signup_state import MenopausePhase

ALL_STEPS: List[int] = [1, 2, 3, 4, 5, 6]
CYCLE_INFO_STEP = 3

# Until a phase is chosen the wizard cannot go past phase selection.
_STEPS_WITHOUT_PHASE: List[int] = [1, 2]

_STEPS_BY_PHASE: Dict[MenopausePhase, List[int]] = {
    MenopausePhase.PRE_MENOPAUSE: ALL_STEPS,
    MenopausePhase.PERI_MENOPAUSE: [s for s in ALL_STEPS if s != CYCLE_INFO_STEP],
    MenopausePhase.POST_MENOPAUSE: [s for s in ALL_STEPS if s != CYCLE_INFO_STEP],
}


def get_visible_steps(phase: Optional[MenopausePhase] = None) -> List[int]:
    """
    Returns the ordered step ids that apply to the given phase.
    A new list is returned on every call.
    """
    if phase is None:
        return list(_STEPS_WITHOUT_PHASE)
    return list(_STEPS_BY_PHASE[MenopausePhase(phase)])

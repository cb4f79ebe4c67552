import pytest

from menoguide.core.signup_state import MenopausePhase
from menoguide.core.visibility import get_visible_steps


def test_no_phase_only_shows_basic_info_and_phase_selection():
    assert get_visible_steps(None) == [1, 2]
    assert get_visible_steps() == [1, 2]


def test_pre_menopause_shows_every_step():
    assert get_visible_steps(MenopausePhase.PRE_MENOPAUSE) == [1, 2, 3, 4, 5, 6]


@pytest.mark.parametrize(
    "phase", [MenopausePhase.PERI_MENOPAUSE, MenopausePhase.POST_MENOPAUSE]
)
def test_other_phases_skip_cycle_info(phase):
    steps = get_visible_steps(phase)

    assert steps == [1, 2, 4, 5, 6]
    assert 3 not in steps


def test_accepts_phase_value_strings():
    assert get_visible_steps("post-menopause") == [1, 2, 4, 5, 6]


def test_returned_list_is_a_fresh_copy():
    steps = get_visible_steps(MenopausePhase.PRE_MENOPAUSE)
    steps.remove(3)

    assert get_visible_steps(MenopausePhase.PRE_MENOPAUSE) == [1, 2, 3, 4, 5, 6]

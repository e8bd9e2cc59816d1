from autorenewagent.core.fsm_orchestrator import (
    decide_after_captcha,
    decide_after_challenge,
    decide_after_recovery,
    is_terminal_phase,
    next_phase,
)
from autorenewagent.core.page_state import NOT_DUE_PHRASE, PageState

BLOCKED = PageState.blocking_error(NOT_DUE_PHRASE)
COMPLETE = PageState.complete("renewal_button")
CAPTCHA = PageState.needs_legacy_captcha()
UNKNOWN = PageState.indeterminate()


def test_start_always_enters_challenge_phase():
    assert next_phase("start", step_ok=False, page_state=UNKNOWN) == "challenge_phase"


def test_decide_after_challenge():
    assert decide_after_challenge(challenge_ok=True, page_state=COMPLETE) == "verified"
    assert decide_after_challenge(challenge_ok=True, page_state=CAPTCHA) == "captcha_phase"
    # 未明确完成时仍走图片验证码
    assert decide_after_challenge(challenge_ok=True, page_state=UNKNOWN) == "captcha_phase"
    assert decide_after_challenge(challenge_ok=False, page_state=UNKNOWN) == "captcha_phase"


def test_blocking_text_wins_in_every_phase():
    assert decide_after_challenge(challenge_ok=True, page_state=BLOCKED) == "blocked"
    assert decide_after_captcha(captcha_ok=True, page_state=BLOCKED) == "blocked"
    assert decide_after_recovery(recovered=True, page_state=BLOCKED) == "blocked"


def test_decide_after_captcha():
    assert decide_after_captcha(captcha_ok=True, page_state=UNKNOWN) == "verified"
    assert decide_after_captcha(captcha_ok=False, page_state=CAPTCHA) == "recovery_phase"


def test_decide_after_recovery():
    assert decide_after_recovery(recovered=True, page_state=COMPLETE) == "verified"
    assert decide_after_recovery(recovered=False, page_state=CAPTCHA) == "failed"


def test_terminal_phases_do_not_move():
    for phase in ("verified", "blocked", "failed"):
        assert is_terminal_phase(phase)
        assert next_phase(phase, step_ok=True, page_state=COMPLETE) == phase
    assert not is_terminal_phase("recovery_phase")

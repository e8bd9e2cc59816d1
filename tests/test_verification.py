from __future__ import annotations

import pytest

from autorenewagent.core.captcha_resolver import CaptchaResolver
from autorenewagent.core.challenge_resolver import ChallengeResolver
from autorenewagent.core.debug_capture import DebugCapture
from autorenewagent.core.errors import RecoveryExhausted
from autorenewagent.core.page_state import NOT_DUE_PHRASE, SNAPSHOT_SCRIPT, PageState
from autorenewagent.core.strategy import no_backoff
from autorenewagent.core.verification import VerificationEngine
from tests.fakes import RENEW_SELECTOR, FakeSession, StubRecognizer, snapshot_handler


class _Step:
    """Resolver stand-in returning a fixed bool and counting calls."""

    def __init__(self, result: bool) -> None:
        self.result = result
        self.calls = 0

    def __call__(self, *_args, **_kwargs) -> bool:
        self.calls += 1
        return self.result

    resolve = solve = recover = __call__


def _classifier(*states):
    seq = list(states)

    def classify(_session):
        return seq.pop(0) if len(seq) > 1 else seq[0]

    return classify


def _real_engine(settings, tmp_path, recognizer):
    debug = DebugCapture(tmp_path)
    return VerificationEngine(
        settings=settings,
        debug_capture=debug,
        challenge_resolver=ChallengeResolver(
            settings=settings, backoff=no_backoff, debug_capture=debug
        ),
        captcha_resolver=CaptchaResolver(
            recognizer=recognizer, settings=settings, debug_capture=debug
        ),
    )


def test_renew_control_visible_without_captcha_image(settings, tmp_path):
    recognizer = StubRecognizer("4821")
    session = FakeSession(
        present=[RENEW_SELECTOR],
        scripts={SNAPSHOT_SCRIPT: snapshot_handler(has_renew_control=True)},
    )
    engine = _real_engine(settings, tmp_path, recognizer)

    assert engine.resolve_challenge(session) is True
    assert engine.solve_captcha_if_present(session) is True
    outcome = engine.run(session)

    assert outcome.ok
    assert outcome.history == ["challenge_phase"]
    assert recognizer.calls == []


def test_not_due_message_is_informational_and_never_fills(settings, tmp_path):
    recognizer = StubRecognizer("4821")
    body = f"{NOT_DUE_PHRASE}。2025年07月06日以降にお試しください。"
    session = FakeSession(
        scripts={SNAPSHOT_SCRIPT: snapshot_handler(body_text=body)},
    )
    outcome = _real_engine(settings, tmp_path, recognizer).run(session, raise_on_failure=True)

    assert outcome.phase == "blocked"
    assert outcome.informational
    assert outcome.page_state.is_not_due
    assert session.called("fill") == []
    assert session.called("click_expecting_navigation") == []
    assert recognizer.calls == []


def test_challenge_then_captcha_success(settings):
    challenge, captcha, recovery = _Step(False), _Step(True), _Step(False)
    engine = VerificationEngine(
        settings=settings,
        challenge_resolver=challenge,
        captcha_resolver=captcha,
        recovery=recovery,
        classify=_classifier(PageState.needs_legacy_captcha(), PageState.indeterminate()),
    )
    outcome = engine.run(FakeSession())

    assert outcome.phase == "verified"
    assert outcome.history == ["challenge_phase", "captcha_phase"]
    assert outcome.phase_results == {"challenge_phase": False, "captcha_phase": True}
    assert recovery.calls == 0


def test_successful_challenge_waits_before_classifying(settings):
    session = FakeSession()
    engine = VerificationEngine(
        settings=settings,
        challenge_resolver=_Step(True),
        captcha_resolver=_Step(False),
        recovery=_Step(False),
        classify=_classifier(PageState.complete()),
        post_challenge_settle_ms=3000,
    )
    assert engine.run(session).ok
    assert session.pauses == [3000]


def test_recovery_rescues_failed_captcha(settings):
    engine = VerificationEngine(
        settings=settings,
        challenge_resolver=_Step(False),
        captcha_resolver=_Step(False),
        recovery=_Step(True),
        classify=_classifier(PageState.needs_legacy_captcha()),
    )
    outcome = engine.run(FakeSession())
    assert outcome.phase == "verified"
    assert outcome.history == ["challenge_phase", "captcha_phase", "recovery_phase"]


def test_exhausted_recovery_saves_state_and_raises(settings, tmp_path):
    engine = VerificationEngine(
        settings=settings,
        debug_capture=DebugCapture(tmp_path),
        challenge_resolver=_Step(False),
        captcha_resolver=_Step(False),
        recovery=_Step(False),
        classify=_classifier(PageState.needs_legacy_captcha()),
    )
    with pytest.raises(RecoveryExhausted) as excinfo:
        engine.run(FakeSession(), raise_on_failure=True)

    names = sorted(p.rsplit("/", 1)[-1] for p in excinfo.value.artifacts)
    assert len(names) == 3
    assert all(n.startswith("debug_state_verification_failed_") for n in names)
    assert {n.rsplit(".", 1)[-1] for n in names} == {"html", "json", "png"}


def test_exhausted_recovery_without_raise_reports_failed(settings, tmp_path):
    engine = VerificationEngine(
        settings=settings,
        debug_capture=DebugCapture(tmp_path),
        challenge_resolver=_Step(False),
        captcha_resolver=_Step(False),
        recovery=_Step(False),
        classify=_classifier(PageState.indeterminate()),
    )
    outcome = engine.run(FakeSession())
    assert outcome.phase == "failed"
    assert not outcome.ok
    assert len(outcome.artifacts) == 3

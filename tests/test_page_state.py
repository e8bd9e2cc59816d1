from __future__ import annotations

import pytest

from autorenewagent.core.errors import SessionUnusable
from autorenewagent.core.page_state import (
    EVALUATION_FAILED,
    NOT_DUE_PHRASE,
    SNAPSHOT_SCRIPT,
    PageSnapshot,
    PageState,
    classify_page_state,
    classify_snapshot,
)
from tests.fakes import FakeSession, snapshot_handler


def test_data_image_wins_over_renew_control():
    state = classify_snapshot(
        PageSnapshot(has_data_image=True, has_renew_control=True, body_text="契約更新")
    )
    assert state == PageState.needs_legacy_captcha()
    assert state.needs_captcha


def test_captcha_input_alone_means_legacy_captcha():
    state = classify_snapshot(PageSnapshot(has_captcha_input=True))
    assert state.kind == "needs_legacy_captcha"


def test_renew_control_means_complete():
    state = classify_snapshot(PageSnapshot(has_renew_control=True))
    assert state.is_complete
    assert state.detail == "renewal_button"


def test_not_due_text_is_blocking_even_though_it_mentions_renewal():
    body = f"{NOT_DUE_PHRASE}。2025年7月6日以降にお試しください。更新手続き"
    state = classify_snapshot(PageSnapshot(body_text=body))
    assert state.is_blocked
    assert state.is_not_due
    assert state.detail == NOT_DUE_PHRASE


def test_generic_error_text_is_blocking_but_not_not_due():
    state = classify_snapshot(PageSnapshot(body_text="処理に失敗しました"))
    assert state.is_blocked
    assert not state.is_not_due


def test_next_step_text_means_complete():
    state = classify_snapshot(PageSnapshot(body_text="契約更新のお手続き"))
    assert state == PageState.complete("renewal_process")


def test_empty_snapshot_is_indeterminate():
    assert classify_snapshot(PageSnapshot()).kind == "indeterminate"


def test_classify_snapshot_is_pure():
    snapshot = PageSnapshot(body_text="エラー")
    assert classify_snapshot(snapshot) == classify_snapshot(snapshot)


def test_from_raw_tolerates_missing_keys():
    snapshot = PageSnapshot.from_raw({"hasDataImage": 1})
    assert snapshot.has_data_image is True
    assert snapshot.body_text == ""
    assert PageSnapshot.from_raw(None) == PageSnapshot()


def test_classify_page_state_reads_one_snapshot(settings):
    seen = []

    def handler(arg, scope):
        seen.append((arg, scope))
        return snapshot_handler(has_renew_control=True)(arg, scope)

    session = FakeSession(scripts={SNAPSHOT_SCRIPT: handler})
    state = classify_page_state(session, settings=settings)

    assert state.is_complete
    assert seen == [
        (
            {"placeholder": "上の画像的数字を入力", "renewLabel": "無料VPSの利用を継続する"},
            None,
        )
    ]


def test_evaluation_failure_is_indeterminate(settings):
    def boom(_arg, _scope):
        raise RuntimeError("Execution context was destroyed")

    logs = []
    session = FakeSession(scripts={SNAPSHOT_SCRIPT: boom})
    state = classify_page_state(
        session, settings=settings, log_fn=lambda msg, level="info": logs.append(level)
    )

    assert state == PageState.indeterminate(EVALUATION_FAILED)
    assert state.is_unreadable
    assert not PageState.indeterminate().is_unreadable
    assert logs == ["warn"]


def test_closed_session_is_not_swallowed(settings):
    session = FakeSession()
    session.closed = True
    with pytest.raises(SessionUnusable):
        classify_page_state(session, settings=settings)


def test_not_due_page_read_from_session(settings):
    session = FakeSession(
        scripts={
            SNAPSHOT_SCRIPT: snapshot_handler(
                body_text=f"{NOT_DUE_PHRASE}。2025年7月6日以降にお試しください。"
            )
        }
    )
    state = classify_page_state(session, settings=settings)
    assert state == PageState.blocking_error(NOT_DUE_PHRASE)
    assert state.is_not_due

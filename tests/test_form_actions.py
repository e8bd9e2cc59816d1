from __future__ import annotations

import pytest

from autorenewagent.core import form_actions
from autorenewagent.core.errors import SessionUnusable
from autorenewagent.core.form_actions import FormActionExecutor
from autorenewagent.core.strategy import AttemptLog
from tests.fakes import (
    PLACEHOLDER_SELECTOR,
    RENEW_SELECTOR,
    FakeSession,
    read_back_handler,
)


def _executor(settings):
    return FormActionExecutor(settings=settings)


def test_fill_uses_placeholder_field_and_reads_back(settings):
    session = FakeSession(present=[PLACEHOLDER_SELECTOR])
    session.scripts[form_actions._READ_BACK_JS] = read_back_handler(session)
    log = AttemptLog()

    assert _executor(settings).fill(session, "4821", attempt_log=log) is True
    assert session.values[PLACEHOLDER_SELECTOR] == "4821"
    assert log.names() == ["original_placeholder"]


def test_fill_falls_back_to_text_input(settings):
    session = FakeSession(present=['input[type="text"]'])
    session.scripts[form_actions._READ_BACK_JS] = read_back_handler(session)
    log = AttemptLog()

    assert _executor(settings).fill(session, "9031", attempt_log=log) is True
    assert [(r.strategy_name, r.outcome) for r in log.records] == [
        ("original_placeholder", "error"),
        ("input_type_text", "success"),
    ]


def test_fill_into_wrong_field_is_not_success(settings):
    # the captcha field ignores writes; another text input accepts them
    session = FakeSession(
        present=[PLACEHOLDER_SELECTOR, 'input[type="text"]'],
        readonly=[PLACEHOLDER_SELECTOR],
    )
    session.scripts[form_actions._READ_BACK_JS] = read_back_handler(session)
    log = AttemptLog()

    assert _executor(settings).fill(session, "5566", attempt_log=log) is False
    assert session.values.get('input[type="text"]') == "5566"
    assert not log.succeeded()
    assert log.names() == list(form_actions.FILL_STRATEGY_NAMES)


def test_scripted_fill_that_finds_nothing_is_an_error(settings):
    session = FakeSession()
    session.scripts[form_actions._ASSIGN_VISIBLE_INPUT_JS] = lambda arg, scope: False
    log = AttemptLog()

    assert _executor(settings).fill(session, "1234", attempt_log=log) is False
    assert {r.outcome for r in log.records} == {"error"}


def test_by_attributes_fill_passes_candidate_keys(settings):
    seen = {}

    def assign(arg, _scope):
        seen.update(arg)
        session.values["input#captcha_code"] = arg["code"]
        return True

    session = FakeSession()
    session.scripts[form_actions._ASSIGN_BY_ATTRIBUTES_JS] = assign
    session.scripts[form_actions._READ_BACK_JS] = read_back_handler(session)

    assert _executor(settings).fill(session, "7788") is True
    assert seen == {"code": "7788", "keys": ["captcha", "code", "verify", "verification"]}


def test_submit_with_navigation_succeeds_first(settings):
    session = FakeSession(present=[RENEW_SELECTOR], navigation_result=True)
    log = AttemptLog()

    assert _executor(settings).submit(session, attempt_log=log) is True
    assert session.called("click_expecting_navigation") == [
        ("click_expecting_navigation", RENEW_SELECTOR)
    ]
    assert log.names() == ["click_with_navigation"]
    assert session.pauses == [1000]


def test_submit_polls_page_text_after_plain_click(settings):
    session = FakeSession(present=[RENEW_SELECTOR], navigation_result=False)
    session.scripts[form_actions._PAGE_ADVANCED_JS] = lambda arg, scope: True
    log = AttemptLog()

    assert _executor(settings).submit(session, attempt_log=log) is True
    assert log.names() == ["click_with_navigation", "click_then_poll_text"]
    assert session.pauses == [1000, 3000]


def test_submit_exhausts_retries(settings):
    session = FakeSession()
    session.scripts[form_actions._SCRIPTED_SUBMIT_JS] = lambda arg, scope: False
    log = AttemptLog()

    assert _executor(settings).submit(session, max_retries=2, attempt_log=log) is False
    assert len(log) == 2 * len(form_actions.SUBMIT_STRATEGY_NAMES)
    assert session.pauses == [1000, 2000, 1000]


def test_page_advanced_requires_placeholder_gone(settings):
    seen = []

    def advanced(arg, _scope):
        seen.append(arg)
        return False

    session = FakeSession(scripts={form_actions._PAGE_ADVANCED_JS: advanced})
    assert _executor(settings).page_advanced(session) is False
    assert seen[0]["placeholder"] == "上の画像的数字を入力"
    assert "更新手続き" in seen[0]["phrases"]


def test_read_errors_are_negative_but_closed_session_propagates(settings):
    def boom(_arg, _scope):
        raise RuntimeError("Execution context was destroyed")

    session = FakeSession(
        scripts={form_actions._READ_BACK_JS: boom, form_actions._PAGE_ADVANCED_JS: boom}
    )
    executor = _executor(settings)
    assert executor.read_back_matches(session, "4821") is False
    assert executor.page_advanced(session) is False

    session.closed = True
    with pytest.raises(SessionUnusable):
        executor.read_back_matches(session, "4821")
    with pytest.raises(SessionUnusable):
        executor.page_advanced(session)

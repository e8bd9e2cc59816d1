"""
验证阶段状态机决策模块

职责：
- start -> challenge_phase -> captcha_phase -> {verified, recovery_phase} -> 终态
- 以纯函数表达各阶段之后的去向，替代贯穿多层循环的 solved 标志
- 保持决策纯函数化，便于测试与回放
"""

from __future__ import annotations

from typing import Literal

from .page_state import PageState

VerificationPhase = Literal[
    "start",
    "challenge_phase",
    "captcha_phase",
    "recovery_phase",
    "verified",
    "blocked",
    "failed",
]

TERMINAL_PHASES: frozenset[str] = frozenset({"verified", "blocked", "failed"})


def is_terminal_phase(phase: str) -> bool:
    return phase in TERMINAL_PHASES


def decide_after_challenge(
    *,
    challenge_ok: bool,
    page_state: PageState,
) -> VerificationPhase:
    # 阻断文案优先：不再尝试任何填写/提交
    if page_state.is_blocked:
        return "blocked"
    if page_state.is_complete:
        return "verified"
    # challenge 失败也继续走图片验证码，由后续分类/恢复裁决
    return "captcha_phase"


def decide_after_captcha(
    *,
    captcha_ok: bool,
    page_state: PageState,
) -> VerificationPhase:
    if page_state.is_blocked:
        return "blocked"
    if captcha_ok:
        return "verified"
    return "recovery_phase"


def decide_after_recovery(
    *,
    recovered: bool,
    page_state: PageState,
) -> VerificationPhase:
    if page_state.is_blocked:
        return "blocked"
    if recovered:
        return "verified"
    return "failed"


def next_phase(
    phase: VerificationPhase,
    *,
    step_ok: bool,
    page_state: PageState,
) -> VerificationPhase:
    """统一入口：根据当前阶段与该阶段的结果给出下一阶段。"""
    if phase == "start":
        return "challenge_phase"
    if phase == "challenge_phase":
        return decide_after_challenge(challenge_ok=step_ok, page_state=page_state)
    if phase == "captcha_phase":
        return decide_after_captcha(captcha_ok=step_ok, page_state=page_state)
    if phase == "recovery_phase":
        return decide_after_recovery(recovered=step_ok, page_state=page_state)
    return phase

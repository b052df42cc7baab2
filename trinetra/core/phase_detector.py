"""Phase detection - classify recent pane output into a coarse SessionPhase.

The phase is advisory (UX prioritization only) and is recomputed from scratch on
every call: no state survives between calls.

Classification is data-driven: PHASE_RULES lists (phase, patterns, priority)
entries. Every rule is evaluated, every matching rule becomes a candidate, and
the candidate with the highest priority wins. An interactive prompt therefore
outranks an error message in the same window, since answering the prompt is
what the user has to do next.
"""

import re
from dataclasses import dataclass
from typing import Optional, Pattern

from trinetra.constants import PHASE_WINDOW_LINES, WAITING_WINDOW_LINES
from trinetra.core.models import SessionPhase


@dataclass(frozen=True)
class PhaseRule:
    phase: SessionPhase
    patterns: tuple[Pattern[str], ...]
    priority: int

    def matches(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.patterns)


def _compile(*patterns: str, flags: int = 0) -> tuple[Pattern[str], ...]:
    return tuple(re.compile(p, flags) for p in patterns)


_I = re.IGNORECASE

PHASE_RULES: tuple[PhaseRule, ...] = (
    PhaseRule(
        phase=SessionPhase.WAITING,
        patterns=(
            *_compile(
                r"\[y/n\]",
                r"\[yes/no\]",
                r"continue\?",
                r"proceed\?",
                r"Press Enter",
                r"Press any key",
                r"\(y/n\)",
                r"Confirm\?",
                r"Are you sure\?",
                r"Overwrite\?",
                flags=_I,
            ),
            *_compile(r"\[Y/n\]", r": $", r"\? $"),
        ),
        priority=100,
    ),
    PhaseRule(
        phase=SessionPhase.ERROR,
        patterns=(
            *_compile(
                r"\bFAIL\b",
                r"\bERROR\b",
                r"AssertionError",
                r"TypeError",
                r"ReferenceError",
                r"SyntaxError",
                r"ENOENT",
                r"EACCES",
                r"ECONNREFUSED",
                r"Exception",
                r"Traceback",
                r"panic:",
                r"npm ERR!",
            ),
            *_compile(r"\berror:", r"\bfailed\b", r"fatal:", r"yarn error", flags=_I),
        ),
        priority=90,
    ),
    PhaseRule(
        phase=SessionPhase.TESTING,
        patterns=(
            *_compile(
                r"\btest\b",
                r"\bjest\b",
                r"\bpytest\b",
                r"\bmocha\b",
                r"\bvitest\b",
                r"running tests",
                r"test suite",
                r"\bspecs?\b",
                r"Test Results",
                flags=_I,
            ),
            *_compile(r"\bPASS\b", r"\bFAILED\b", r"\d+ passing", r"\d+ failing", r"===== test session starts ====="),
        ),
        priority=80,
    ),
    PhaseRule(
        phase=SessionPhase.BUILDING,
        patterns=(
            *_compile(
                r"\bbuild\b",
                r"\bcompil",
                r"\bwebpack\b",
                r"\bvite\b",
                r"\besbuild\b",
                r"\brollup\b",
                r"\bparcel\b",
                r"\bbundl",
                r"Building\.\.\.",
                r"Compiling\.\.\.",
                r"Starting production build",
                r"Build succeeded",
                r"Build failed",
                r"Generating\.\.\.",
                flags=_I,
            ),
            *_compile(r"\btsc\b"),
        ),
        priority=70,
    ),
    PhaseRule(
        phase=SessionPhase.CODING,
        patterns=_compile(
            r"\bclaude\b",
            r"\bcodex\b",
            r"\bcursor\b",
            r"\bcopilot\b",
            r"\bcodewhisperer\b",
            r"\baider\b",
            r"\bgpt-4\b",
            r"\bopenai\b",
            r"AI assistant",
            r"Thinking\.\.\.",
            r"Generating code",
            flags=_I,
        ),
        priority=60,
    ),
)

_RULES_BY_PHASE = {rule.phase: rule for rule in PHASE_RULES}


def _tail(text: str, last_n_lines: int) -> str:
    """Last N lines of text, ignoring the blank padding below a captured screen."""
    lines = text.rstrip("\n").split("\n")
    return "\n".join(lines[-last_n_lines:])


def matching_phases(text: str, last_n_lines: int = PHASE_WINDOW_LINES) -> list[SessionPhase]:
    """All phases whose patterns match the window, highest priority first."""
    window = _tail(text, last_n_lines)
    candidates = [rule for rule in PHASE_RULES if rule.matches(window)]
    return [rule.phase for rule in sorted(candidates, key=lambda rule: rule.priority, reverse=True)]


def detect_phase(text: str, last_n_lines: int = PHASE_WINDOW_LINES) -> SessionPhase:
    """Detect the session phase from the trailing lines of pane output.

    Args:
        text: Pane content (snapshot text)
        last_n_lines: Size of the trailing window analyzed

    Returns:
        Highest-priority matching phase, or IDLE when nothing matches
    """
    window = _tail(text, last_n_lines)
    best: Optional[PhaseRule] = None
    for rule in PHASE_RULES:
        if rule.matches(window) and (best is None or rule.priority > best.priority):
            best = rule
    return best.phase if best else SessionPhase.IDLE


def is_waiting_for_input(text: str) -> bool:
    """Check if the last few lines show an interactive prompt."""
    return _RULES_BY_PHASE[SessionPhase.WAITING].matches(_tail(text, WAITING_WINDOW_LINES))


def has_error(text: str) -> bool:
    """Check if any error signature appears anywhere in text."""
    return _RULES_BY_PHASE[SessionPhase.ERROR].matches(text)

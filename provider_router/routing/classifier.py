"""Task complexity classification for tier selection.

The TaskClassifier maps a task description (plus optional hints) to a
capability profile. Rules, in precedence order:

1. Vision: image-file extension or visual keyword -> requires_vision
   (independent of the complexity tier)
2. Reasoning-heavy: deep-reasoning keyword ("think", "megathink",
   "deeply", ...) -> REASONING_HEAVY
3. Complex: analytical keyword ("analyze", "refactor", "architecture",
   ...) or text longer than 500 characters -> COMPLEX
4. Moderate: code-authoring keyword ("write", "implement", "fix", ...)
   -> MODERATE
5. Otherwise -> SIMPLE

Confidence starts from a per-rule baseline and drops when a "simple"
signal and a reasoning signal appear together (ambiguous intent).

Classification is a pure function of its input; results are immutable.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import StrEnum

import structlog

log = structlog.get_logger(__name__)


class TaskComplexity(StrEnum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    REASONING_HEAVY = "reasoning_heavy"


@dataclass(frozen=True)
class ClassificationHints:
    """Caller-supplied knowledge that OR-combines with detected flags."""

    requires_vision: bool = False
    requires_long_context: bool = False


@dataclass(frozen=True)
class ClassificationResult:
    """Capability profile derived from a task description.

    Attributes:
        complexity: Complexity class driving the tier
        requires_vision: Task needs an image-capable model
        requires_reasoning: Task needs multi-step reasoning
        requires_long_context: Task references very large inputs
        estimated_tokens: ``ceil(len(text) / 4)``
        confidence: Trust in the classification (0.0-1.0)
        signals: Matched keywords/rules, for observability
    """

    complexity: TaskComplexity
    requires_vision: bool
    requires_reasoning: bool
    requires_long_context: bool
    estimated_tokens: int
    confidence: float
    signals: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be 0.0-1.0, got {self.confidence}")


class TaskClassifier:
    """Keyword and length heuristics for task complexity."""

    LONG_TEXT_CHARS = 500
    LONG_CONTEXT_TOKENS = 32_000

    IMAGE_EXTENSION = re.compile(r"\.(png|jpe?g|gif|webp)\b", re.IGNORECASE)

    VISION_KEYWORDS = {
        "screenshot",
        "screenshots",
        "diagram",
        "image",
        "images",
        "picture",
        "photo",
        "mockup",
        "wireframe",
        "chart",
        "visual",
    }

    REASONING_KEYWORDS = {
        "think",
        "megathink",
        "ultrathink",
        "deeply",
        "carefully",
        "thoroughly",
        "prove",
        "ponder",
    }

    REASONING_PHRASES = ("step by step", "think hard", "reason through", "think through")

    COMPLEX_KEYWORDS = {
        "analyze",
        "analyse",
        "analysis",
        "refactor",
        "architecture",
        "design",
        "optimize",
        "security",
        "vulnerability",
        "threat",
        "reasoning",
        "explain",
        "why",
        "compare",
        "evaluate",
        "assess",
        "review",
        "audit",
        "investigate",
        "migrate",
    }

    MODERATE_KEYWORDS = {
        "write",
        "implement",
        "create",
        "fix",
        "debug",
        "build",
        "convert",
        "generate",
        "rename",
        "function",
        "class",
        "method",
        "endpoint",
        "script",
    }

    SIMPLE_KEYWORDS = {
        "list",
        "show",
        "display",
        "print",
        "status",
        "hello",
        "hi",
        "simple",
        "just",
        "quick",
        "quickly",
        "read",
        "ls",
        "cat",
    }

    LONG_CONTEXT_PHRASES = (
        "entire codebase",
        "whole codebase",
        "entire repository",
        "whole repository",
        "entire repo",
        "whole repo",
        "whole project",
        "entire project",
    )

    def classify(
        self,
        text: str,
        hints: ClassificationHints | None = None,
    ) -> ClassificationResult:
        """Classify a task description.

        Args:
            text: Task description or user message
            hints: Optional caller knowledge (vision input attached, ...)

        Returns:
            ClassificationResult
        """
        hints = hints or ClassificationHints()
        lowered = text.lower()
        words = set(re.findall(r"\b\w+\b", lowered))
        estimated_tokens = math.ceil(len(text) / 4)
        signals: list[str] = []

        vision_hits = sorted(words & self.VISION_KEYWORDS)
        has_image_file = bool(self.IMAGE_EXTENSION.search(text))
        requires_vision = hints.requires_vision or has_image_file or bool(vision_hits)
        if has_image_file:
            signals.append("image_file")
        signals.extend(f"vision:{w}" for w in vision_hits)

        reasoning_hits = sorted(words & self.REASONING_KEYWORDS)
        reasoning_hits += [p for p in self.REASONING_PHRASES if p in lowered]
        complex_hits = sorted(words & self.COMPLEX_KEYWORDS)
        moderate_hits = sorted(words & self.MODERATE_KEYWORDS)
        simple_hits = sorted(words & self.SIMPLE_KEYWORDS)
        is_long = len(text) > self.LONG_TEXT_CHARS

        if reasoning_hits:
            complexity = TaskComplexity.REASONING_HEAVY
            requires_reasoning = True
            confidence = 0.9
            signals.extend(f"reasoning:{w}" for w in reasoning_hits)
        elif complex_hits or is_long:
            complexity = TaskComplexity.COMPLEX
            requires_reasoning = True
            confidence = 0.85 if complex_hits else 0.7
            signals.extend(f"complex:{w}" for w in complex_hits)
            if is_long:
                signals.append("long_text")
        elif moderate_hits:
            complexity = TaskComplexity.MODERATE
            requires_reasoning = False
            confidence = 0.75
            signals.extend(f"moderate:{w}" for w in moderate_hits)
        else:
            complexity = TaskComplexity.SIMPLE
            requires_reasoning = False
            confidence = 0.9 if simple_hits else 0.7

        if simple_hits and (reasoning_hits or complex_hits):
            # Ambiguous intent: "just analyze this simple file"
            confidence = min(confidence, 0.6)
            signals.append("ambiguous")

        requires_long_context = (
            hints.requires_long_context
            or estimated_tokens > self.LONG_CONTEXT_TOKENS
            or any(p in lowered for p in self.LONG_CONTEXT_PHRASES)
        )

        result = ClassificationResult(
            complexity=complexity,
            requires_vision=requires_vision,
            requires_reasoning=requires_reasoning,
            requires_long_context=requires_long_context,
            estimated_tokens=estimated_tokens,
            confidence=confidence,
            signals=tuple(signals),
        )

        log.debug(
            "task_classifier.classified",
            complexity=complexity.value,
            requires_vision=requires_vision,
            requires_reasoning=requires_reasoning,
            confidence=confidence,
            estimated_tokens=estimated_tokens,
        )
        return result


_default_classifier = TaskClassifier()


def classify_task(text: str, hints: ClassificationHints | None = None) -> ClassificationResult:
    """Classify ``text`` with the default keyword sets."""
    return _default_classifier.classify(text, hints)

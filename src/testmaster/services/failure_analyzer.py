"""
Failure analysis.

Asks the AI client to classify each failed or healed test and suggest
fixes. When AI is disabled or the call fails, a pattern match on the error
message gives a lower-confidence classification instead.
"""

import logging
import re
from typing import Any, Callable, Dict, List, Optional

from ..core.models import AnalysisResult, FailureCategory, TestResult, TestStatus
from .ai_client import AIClient, AIClientError
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

AnalysisProgress = Callable[[float, str, Dict], None]

FALLBACK_CONFIDENCE = 0.6
DEFAULT_AI_CONFIDENCE = 0.7

ANALYSIS_PROMPT = """Analyze this automated web test failure.

Test: {name} ({category})
Status: {status}
Error: {error}
Failed step: {failed_step}
Duration: {duration:.0f}ms
Self-healing: {healing}
Has screenshots: {screenshots}

Classify the failure into ONE category:
1. APP_BUG - an actual bug in the application
2. TEST_ISSUE - a problem with the test itself (stale locator, wrong data)
3. ENVIRONMENT - infrastructure, network or timeout issues
4. FLAKY - intermittent, unstable behaviour

Respond ONLY with valid JSON:
{{"category": "APP_BUG|TEST_ISSUE|ENVIRONMENT|FLAKY",
  "root_cause": "concise explanation",
  "suggested_fix_dev": "fix for developers",
  "suggested_fix_qa": "fix for QA",
  "confidence": 0.85}}"""

FALLBACK_RULES = (
    (re.compile(r'timeout|timed out|network|connection|net::|econn|dns', re.IGNORECASE),
     FailureCategory.ENVIRONMENT,
     "The step did not complete in time or the network failed",
     "Check server availability and response times",
     "Re-run the test and raise timeouts if the environment is slow"),
    (re.compile(r'element not found|locator|no such element|not visible|selector', re.IGNORECASE),
     FailureCategory.TEST_ISSUE,
     "The element the step targets could not be located",
     "Keep stable test ids on interactive elements",
     "Update the locator or approve a suggested healing"),
    (re.compile(r'assert|expected', re.IGNORECASE),
     FailureCategory.APP_BUG,
     "The application did not behave as the test expected",
     "Investigate the behaviour the assertion describes",
     "Confirm the expected behaviour is still correct"),
)


class FailureAnalyzer:
    """Classifies failures with AI, falling back to error patterns."""

    def __init__(self, ai_client: Optional[AIClient] = None):
        self.ai_client = ai_client

    async def analyze(self, results: List[TestResult], use_ai: bool = True,
                      on_progress: Optional[AnalysisProgress] = None,
                      token: Optional[CancellationToken] = None) -> List[AnalysisResult]:
        """Analyze every failed or healed result."""
        targets = [r for r in results if r.status in (TestStatus.FAILED, TestStatus.HEALED)]
        analyses = []
        for index, result in enumerate(targets):
            if token is not None:
                token.raise_if_cancelled()
            analyses.append(await self.analyze_failure(result, use_ai))
            if on_progress:
                on_progress((index + 1) / len(targets) * 100,
                            f"Analyzed {index + 1}/{len(targets)} failures",
                            {"test": result.name})
        logger.info(f"Analyzed {len(analyses)} failed or healed tests")
        return analyses

    async def analyze_failure(self, result: TestResult, use_ai: bool = True) -> AnalysisResult:
        if not use_ai or self.ai_client is None or not self.ai_client.enabled:
            return self.fallback_analysis(result)

        prompt = ANALYSIS_PROMPT.format(
            name=result.name,
            category=result.category.value,
            status=result.status.value,
            error=result.error or "none",
            failed_step=result.failed_step if result.failed_step is not None else "n/a",
            duration=result.duration_ms,
            healing=self._healing_summary(result),
            screenshots="yes" if result.screenshots else "no",
        )
        try:
            response = await self.ai_client.complete(prompt)
            return self.parse_response(response, result.test_id)
        except AIClientError as e:
            logger.warning(f"AI analysis failed for {result.test_id}, using fallback: {e}")
            return self.fallback_analysis(result)

    @staticmethod
    def _healing_summary(result: TestResult) -> str:
        if not result.healing:
            return "none"
        return "; ".join(
            f"{h['failed_locator']} -> {h.get('healed_locator') or h.get('reason')}" for h in result.healing
        )

    @staticmethod
    def parse_response(response: Dict[str, Any], test_id: str) -> AnalysisResult:
        try:
            category = FailureCategory(str(response.get("category", "")).upper())
        except ValueError:
            category = FailureCategory.TEST_ISSUE
        try:
            confidence = float(response.get("confidence"))
        except (TypeError, ValueError):
            confidence = DEFAULT_AI_CONFIDENCE
        return AnalysisResult(
            test_id=test_id,
            category=category,
            root_cause=response.get("root_cause") or "Unknown cause",
            suggested_fix_dev=response.get("suggested_fix_dev") or "Review the error message and fix the issue",
            suggested_fix_qa=response.get("suggested_fix_qa") or "Update the test to handle the new behaviour",
            confidence=min(max(confidence, 0.0), 1.0),
            source="ai",
        )

    @staticmethod
    def fallback_analysis(result: TestResult) -> AnalysisResult:
        """Classify from the error text alone."""
        if result.status == TestStatus.HEALED:
            return AnalysisResult(
                test_id=result.test_id,
                category=FailureCategory.TEST_ISSUE,
                root_cause="A locator drifted and was healed during the run",
                suggested_fix_dev="Keep stable test ids on the healed elements",
                suggested_fix_qa="Update the test with the healed locator",
                confidence=FALLBACK_CONFIDENCE,
                source="fallback",
            )

        error = result.error or ""
        for pattern, category, cause, fix_dev, fix_qa in FALLBACK_RULES:
            if pattern.search(error):
                return AnalysisResult(result.test_id, category, f"{cause}: {error}"[:500],
                                      fix_dev, fix_qa, FALLBACK_CONFIDENCE, source="fallback")
        return AnalysisResult(
            test_id=result.test_id,
            category=FailureCategory.TEST_ISSUE,
            root_cause=error or "Unknown error",
            suggested_fix_dev="Review test logs and the error message",
            suggested_fix_qa="Check test steps and locators",
            confidence=FALLBACK_CONFIDENCE,
            source="fallback",
        )

"""REVIEW -> REWRITE -> POLISH quality pipeline for generated articles."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from contentgen.core.banned_words import find_all_banned
from contentgen.core.prompts import (
    PIPELINE_CONFIG,
    POLISH_SYSTEM_PROMPT,
    REVIEW_CORRECTION,
    REVIEW_SYSTEM_PROMPT,
    REWRITE_SYSTEM_PROMPT,
    STAGE_TEMPERATURE,
    PipelineConfig,
    build_polish_user_prompt,
    build_review_user_prompt,
    build_rewrite_user_prompt,
    parse_article_response,
    parse_review_response,
)
from contentgen.core.schema import Article, ReviewIssue, ReviewResult
from contentgen.infrastructure.llm_types import ErrorCode, GenerationResponse, LLMResult

logger = logging.getLogger(__name__)

RAW_SAMPLE_LENGTH = 500


class TextGenerator(Protocol):
    def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> LLMResult[GenerationResponse]: ...


class Stage(str, Enum):
    REVIEW = "review"
    REWRITE = "rewrite"
    POLISH = "polish"


@dataclass(slots=True)
class PipelineRun:
    """Mutable state of one pipeline execution."""

    working: Article
    stage: Stage = Stage.REVIEW
    issues: list[ReviewIssue] = field(default_factory=list)
    banned_matches: set[str] = field(default_factory=set)
    review_history: list[ReviewResult] = field(default_factory=list)
    rewrite_count: int = 0


@dataclass(frozen=True, slots=True)
class PipelineResult:
    article: Article
    review_history: list[ReviewResult]
    rewrite_count: int
    passed: bool
    warnings: list[str] = field(default_factory=list)
    banned_matches: set[str] = field(default_factory=set)

    @property
    def final_issues(self) -> list[ReviewIssue]:
        if not self.review_history:
            return []
        return list(self.review_history[-1].issues)

    def issues_as_dicts(self) -> list[dict[str, Any]]:
        return [
            issue.model_dump(by_alias=True, exclude_none=True) for issue in self.final_issues
        ]


@dataclass(frozen=True, slots=True)
class PipelineFailure:
    stage: Stage
    code: ErrorCode
    reason: str
    raw_sample: str
    article: Article


class _StageFailed(Exception):
    def __init__(self, failure: PipelineFailure) -> None:
        super().__init__(failure.reason)
        self.failure = failure


def _sample(text: str) -> str:
    return text[:RAW_SAMPLE_LENGTH]


class ArticlePipeline:
    """Drive an article through review, rewrite and polish model calls.

    The pipeline never touches the job store.  A provider error at any stage
    aborts the run and is returned as a :class:`PipelineFailure`; transient
    errors have already been retried by the client at that point.
    """

    def __init__(self, client: TextGenerator, config: PipelineConfig = PIPELINE_CONFIG) -> None:
        self._client = client
        self._config = config

    def run(self, article: Article) -> PipelineResult | PipelineFailure:
        run = PipelineRun(working=article)
        logger.info("Starting article pipeline")
        try:
            review = self._review(run)
            while not review.passed and review.issues and run.rewrite_count < self._config.max_rewrite_attempts:
                self._rewrite(run, review.issues)
                review = self._review(run)
            self._polish(run)
        except _StageFailed as exc:
            failure = exc.failure
            logger.error("Article pipeline failed at %s: %s", failure.stage.value, failure.reason)
            return failure

        warnings = self._final_scan(run)
        logger.info(
            "Article pipeline complete passed=%s rewrites=%d reviews=%d final_issues=%d",
            review.passed,
            run.rewrite_count,
            len(run.review_history),
            len(review.issues),
        )
        return PipelineResult(
            article=run.working,
            review_history=list(run.review_history),
            rewrite_count=run.rewrite_count,
            passed=review.passed,
            warnings=warnings,
            banned_matches=set(run.banned_matches),
        )

    # ------------------------------------------------------------------
    # stages
    # ------------------------------------------------------------------
    def _call(self, run: PipelineRun, prompt: str, system: str) -> GenerationResponse:
        result = self._client.generate(
            prompt,
            system=system,
            temperature=STAGE_TEMPERATURE[run.stage.value],
        )
        if not result.ok:
            error = result.error
            raise _StageFailed(
                PipelineFailure(
                    stage=run.stage,
                    code=error.code,
                    reason=f"{run.stage.value} failed: {error.message}",
                    raw_sample="",
                    article=run.working,
                )
            )
        return result.data

    def _fail_parse(self, run: PipelineRun, reason: str, raw: str) -> _StageFailed:
        return _StageFailed(
            PipelineFailure(
                stage=run.stage,
                code=ErrorCode.INVALID_RESPONSE,
                reason=f"{run.stage.value} failed: {reason}",
                raw_sample=_sample(raw),
                article=run.working,
            )
        )

    @staticmethod
    def _pre_check(article: Article) -> list[ReviewIssue]:
        matches = find_all_banned(article.full_text())
        issues = [
            ReviewIssue(
                category="slop_word",
                location="article",
                text=word,
                detail=f'Zamijeni riječ "{word}" s konkretnim opisom',
            )
            for word in matches.words
        ]
        issues.extend(
            ReviewIssue(
                category="slop_phrase",
                location="article",
                text=phrase,
                detail=f'Ukloni frazu "{phrase}" ili je zamijeni konkretnom informacijom',
            )
            for phrase in matches.phrases
        )
        return issues

    def _review(self, run: PipelineRun) -> ReviewResult:
        run.stage = Stage.REVIEW
        logger.info("Pipeline stage: REVIEW (%d so far)", len(run.review_history))
        pre_check = self._pre_check(run.working)
        run.banned_matches = {issue.text for issue in pre_check if issue.text}

        prompt = build_review_user_prompt(run.working)
        response = self._call(run, prompt, REVIEW_SYSTEM_PROMPT)
        parsed = parse_review_response(response.response, self._config.max_issues)
        if parsed is None:
            logger.warning("Review response was not valid JSON, retrying with correction")
            response = self._call(run, f"{prompt}\n\n{REVIEW_CORRECTION}", REVIEW_SYSTEM_PROMPT)
            parsed = parse_review_response(response.response, self._config.max_issues)
            if parsed is None:
                raise self._fail_parse(run, "JSON extraction failed", response.response)

        # pre-check findings come first and survive the cap
        issues = (pre_check + parsed.issues)[: self._config.max_issues]
        # a failing verdict stands even when none of its issues were usable
        review = ReviewResult(passed=parsed.passed and not issues, issues=issues)
        run.issues = list(issues)
        run.review_history.append(review)
        return review

    def _rewrite(self, run: PipelineRun, issues: list[ReviewIssue]) -> None:
        run.stage = Stage.REWRITE
        logger.info("Pipeline stage: REWRITE attempt=%d issues=%d", run.rewrite_count + 1, len(issues))
        response = self._call(run, build_rewrite_user_prompt(run.working, issues), REWRITE_SYSTEM_PROMPT)
        article, reason = parse_article_response(response.response)
        if article is None:
            raise self._fail_parse(run, reason or "missing required fields", response.response)
        run.working = article
        run.rewrite_count += 1

    def _polish(self, run: PipelineRun) -> None:
        run.stage = Stage.POLISH
        logger.info("Pipeline stage: POLISH")
        response = self._call(run, build_polish_user_prompt(run.working), POLISH_SYSTEM_PROMPT)
        article, reason = parse_article_response(response.response)
        if article is None:
            raise self._fail_parse(run, reason or "missing required fields", response.response)

        before = find_all_banned(run.working.full_text()).all()
        introduced = find_all_banned(article.full_text()).all() - before
        if introduced:
            logger.warning("Polish introduced banned terms %s, keeping previous draft", sorted(introduced))
            return
        run.working = article

    def _final_scan(self, run: PipelineRun) -> list[str]:
        matches = find_all_banned(run.working.full_text())
        run.banned_matches = matches.all()
        if not matches:
            return []
        logger.warning(
            "Final article contains banned terms words=%s phrases=%s", matches.words, matches.phrases
        )
        warnings = [f'Banned word: "{word}"' for word in matches.words]
        warnings.extend(f'Banned phrase: "{phrase}"' for phrase in matches.phrases)
        return warnings

from __future__ import annotations

import json
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

from contentgen.core.prompts import REVIEW_CORRECTION, STAGE_TEMPERATURE
from contentgen.core.schema import Article
from contentgen.infrastructure.llm_types import ErrorCode, GenerationResponse, LLMResult
from contentgen.workers.pipeline import ArticlePipeline, PipelineFailure, PipelineResult, Stage

CLEAN = Article(
    title="Zatvaranje ceste kroz Dubovicu",
    content="<p>Cesta kroz Dubovicu zatvorena je od 15. do 22. ožujka.</p>",
    excerpt="Cesta je zatvorena tjedan dana.",
)


class ScriptedClient:
    """Returns queued responses in order and records every call."""

    def __init__(self, *responses: LLMResult[GenerationResponse] | str) -> None:
        self._responses = list(responses)
        self.calls: list[dict] = []

    def generate(self, prompt, *, system=None, temperature=0.7, max_tokens=2048):
        self.calls.append({"prompt": prompt, "system": system, "temperature": temperature})
        item = self._responses.pop(0)
        if isinstance(item, str):
            return LLMResult.success(GenerationResponse(model="test-model", response=item))
        return item


def _article_json(article: Article) -> str:
    return json.dumps(article.model_dump(), ensure_ascii=False)


def _review_json(passed: bool, issues: list[dict] | None = None) -> str:
    return json.dumps({"pass": passed, "issues": issues or []})


def test_clean_article_skips_rewrite_and_is_polished():
    polished = CLEAN.model_copy(update={"excerpt": "Cesta je zatvorena sedam dana."})
    client = ScriptedClient(_review_json(True), _article_json(polished))

    result = ArticlePipeline(client).run(CLEAN)

    assert isinstance(result, PipelineResult)
    assert result.passed is True
    assert result.rewrite_count == 0
    assert result.article == polished
    assert result.warnings == []
    assert [call["temperature"] for call in client.calls] == [
        STAGE_TEMPERATURE["review"],
        STAGE_TEMPERATURE["polish"],
    ]


def test_issues_trigger_rewrite_and_re_review():
    rewritten = CLEAN.model_copy(update={"title": "Cesta kroz Dubovicu zatvorena"})
    issue = {"type": "grammar", "location": "naslov", "text": "Zatvaranje", "fix": "Skrati naslov"}
    client = ScriptedClient(
        _review_json(False, [issue]),
        _article_json(rewritten),
        _review_json(True),
        _article_json(rewritten),
    )

    result = ArticlePipeline(client).run(CLEAN)

    assert isinstance(result, PipelineResult)
    assert result.passed is True
    assert result.rewrite_count == 1
    assert len(result.review_history) == 2
    assert result.article.title == "Cesta kroz Dubovicu zatvorena"
    rewrite_call = client.calls[1]
    assert "Skrati naslov" in rewrite_call["prompt"]
    assert rewrite_call["temperature"] < client.calls[0]["temperature"]


def test_rewrite_loop_is_bounded():
    issue = {"type": "missing_local", "location": "odlomak 1", "fix": "Spomeni mještane"}
    client = ScriptedClient(
        _review_json(False, [issue]),
        _article_json(CLEAN),
        _review_json(False, [issue]),
        _article_json(CLEAN),
        _review_json(False, [issue]),
        _article_json(CLEAN),
    )

    result = ArticlePipeline(client).run(CLEAN)

    assert isinstance(result, PipelineResult)
    assert result.passed is False
    assert result.rewrite_count == 2
    assert len(result.review_history) == 3
    assert result.issues_as_dicts() == [issue]


def test_unparseable_review_is_retried_once_with_correction():
    client = ScriptedClient("Članak je odličan!", _review_json(True), _article_json(CLEAN))

    result = ArticlePipeline(client).run(CLEAN)

    assert isinstance(result, PipelineResult)
    assert REVIEW_CORRECTION in client.calls[1]["prompt"]
    assert len(client.calls) == 3


def test_second_unparseable_review_fails_the_run():
    client = ScriptedClient("nije JSON", "opet nije JSON")

    result = ArticlePipeline(client).run(CLEAN)

    assert isinstance(result, PipelineFailure)
    assert result.stage is Stage.REVIEW
    assert result.code is ErrorCode.INVALID_RESPONSE
    assert result.reason == "review failed: JSON extraction failed"
    assert result.raw_sample == "opet nije JSON"
    assert result.article == CLEAN


def test_review_issue_shapes_and_unknown_categories_are_kept():
    issues = [
        {"type": "grammar", "location": "odlomak 1", "fix": "Ispravi padež"},
        {"type": "tone", "location": "odlomak 2", "fix": "Smiri ton"},
        {"category": "grammar", "detail": "Ispravi padež u naslovu"},
        {"type": "grammar", "location": "odlomak 3"},
        "not an object",
    ]
    client = ScriptedClient(
        _review_json(False, issues),
        _article_json(CLEAN),
        _review_json(True),
        _article_json(CLEAN),
    )

    result = ArticlePipeline(client).run(CLEAN)

    first_review = result.review_history[0]
    assert first_review.passed is False
    assert [(issue.category, issue.detail) for issue in first_review.issues] == [
        ("grammar", "Ispravi padež"),
        ("other", "Smiri ton"),
        ("grammar", "Ispravi padež u naslovu"),
    ]
    assert result.rewrite_count == 1
    rewrite_prompt = client.calls[1]["prompt"]
    assert "Smiri ton" in rewrite_prompt
    assert '3. [grammar]\n   Popravak: Ispravi padež u naslovu' in rewrite_prompt


def test_failing_verdict_without_usable_issues_stays_failed():
    client = ScriptedClient(
        _review_json(False, [{"type": "grammar", "location": "odlomak 1"}]),
        _article_json(CLEAN),
    )

    result = ArticlePipeline(client).run(CLEAN)

    assert isinstance(result, PipelineResult)
    assert result.passed is False
    assert result.rewrite_count == 0
    assert result.review_history[0].issues == []
    assert len(client.calls) == 2


def test_issues_as_dicts_use_model_keys():
    issue = {"category": "tone", "detail": "Smiri ton"}
    client = ScriptedClient(
        _review_json(False, [issue]),
        _article_json(CLEAN),
        _review_json(False, [issue]),
        _article_json(CLEAN),
        _review_json(False, [issue]),
        _article_json(CLEAN),
    )

    result = ArticlePipeline(client).run(CLEAN)

    assert result.passed is False
    assert result.issues_as_dicts() == [{"type": "other", "fix": "Smiri ton"}]



def test_provider_error_aborts_with_stage_tagged_reason():
    failure = LLMResult.failure(ErrorCode.AUTH_ERROR, "Invalid or expired API key", status_code=401)
    issue = {"type": "grammar", "location": "naslov", "fix": "Ispravi"}
    client = ScriptedClient(_review_json(False, [issue]), failure)

    result = ArticlePipeline(client).run(CLEAN)

    assert isinstance(result, PipelineFailure)
    assert result.stage is Stage.REWRITE
    assert result.code is ErrorCode.AUTH_ERROR
    assert result.reason == "rewrite failed: Invalid or expired API key"
    assert len(client.calls) == 2


def test_incomplete_polish_output_fails_the_run():
    client = ScriptedClient(_review_json(True), json.dumps({"title": "Samo naslov"}))

    result = ArticlePipeline(client).run(CLEAN)

    assert isinstance(result, PipelineFailure)
    assert result.stage is Stage.POLISH
    assert result.reason == "polish failed: missing required fields"


def test_banned_words_become_issues_and_warnings():
    sloppy = CLEAN.model_copy(update={"content": "<p>Inovativno rješenje. Važno je napomenuti da radovi traju.</p>"})
    client = ScriptedClient(
        _review_json(True),
        _article_json(sloppy),
        _review_json(True),
        _article_json(sloppy),
        _review_json(True),
        _article_json(sloppy),
    )

    result = ArticlePipeline(client).run(sloppy)

    assert isinstance(result, PipelineResult)
    first_review = result.review_history[0]
    assert [issue.category for issue in first_review.issues] == ["slop_word", "slop_phrase"]
    assert first_review.passed is False
    assert result.passed is False
    assert result.rewrite_count == 2
    assert result.warnings == ['Banned word: "inovativno"', 'Banned phrase: "važno je napomenuti"']
    assert result.banned_matches == {"inovativno", "važno je napomenuti"}


def test_polish_that_introduces_banned_words_is_discarded():
    worse = CLEAN.model_copy(update={"excerpt": "Revolucionarno zatvaranje ceste."})
    client = ScriptedClient(_review_json(True), _article_json(worse))

    result = ArticlePipeline(client).run(CLEAN)

    assert isinstance(result, PipelineResult)
    assert result.article == CLEAN
    assert result.warnings == []

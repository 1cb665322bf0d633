# pyright: reportMissingImports=false
# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUntypedFunctionDecorator=false

from __future__ import annotations

import json
import logging
from typing import cast

from celery import Task
from sqlalchemy.orm import Session

from mindhit.ai.dispatcher import get_dispatcher
from mindhit.ai.errors import AIError
from mindhit.ai.types import ChatOptions, ChatRequest
from mindhit.db.session import engine
from mindhit.services import url_service
from mindhit.workers.celery_app import celery_app
from mindhit.workers.errors import NonRetryableJobError, RetryableJobError
from mindhit.workers.jobs import run_job


logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 8000

TAG_EXTRACTION_PROMPT = """Analyze the web page and extract the following:
1. Core keywords 3-5 (nouns)
2. 1-2 sentence summary

Page title: {title}
Page content:
{content}

Respond in JSON format:
{{
  "keywords": ["keyword1", "keyword2", "keyword3"],
  "summary": "Page summary"
}}"""


def truncate_content(content: str, limit: int = MAX_CONTENT_CHARS) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + "…"


def parse_tags(content: str) -> tuple[list[str], str]:
    try:
        raw = cast(object, json.loads(content))
    except ValueError as e:
        raise NonRetryableJobError(f"tag response is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise NonRetryableJobError("tag response must be a JSON object")
    body = cast(dict[str, object], raw)

    keywords_raw = body.get("keywords")
    if not isinstance(keywords_raw, list):
        raise NonRetryableJobError("tag response missing keywords list")
    keywords: list[str] = []
    for k in cast(list[object], keywords_raw):
        if not isinstance(k, str):
            raise NonRetryableJobError("keywords must be strings")
        if k.strip():
            keywords.append(k.strip())

    summary = body.get("summary", "")
    if not isinstance(summary, str):
        raise NonRetryableJobError("summary must be a string")
    return keywords, summary


def _require_str(payload: dict[str, object], key: str) -> str:
    v = payload.get(key)
    if not isinstance(v, str) or v == "":
        raise NonRetryableJobError(f"payload missing {key}")
    return v


def handle_tag_extraction(payload: dict[str, object]) -> None:
    url_id = _require_str(payload, "url_id")
    logger.info("extracting tags url_id=%s", url_id)

    with Session(engine) as db:
        url = url_service.get_by_id(db, url_id)
        if url is None:
            raise NonRetryableJobError(f"url {url_id} not found")
        if url.keywords:
            logger.debug("url already has keywords, skipping url_id=%s", url_id)
            return
        if not url.content:
            logger.warning("url has no content, skipping url_id=%s", url_id)
            return
        prompt = TAG_EXTRACTION_PROMPT.format(
            title=url.title or "", content=truncate_content(url.content)
        )

    req = ChatRequest(
        user_prompt=prompt,
        options=ChatOptions(max_tokens=500, json_mode=True),
        metadata={"url_id": url_id},
    )
    try:
        resp = get_dispatcher().chat("tag_extraction", req)
    except AIError as e:
        raise RetryableJobError(f"ai tag extraction: {e}") from e

    keywords, summary = parse_tags(resp.content)

    with Session(engine) as db:
        _ = url_service.update_summary(db, url_id, summary=summary, keywords=keywords)
        db.commit()

    logger.info(
        "tags extracted url_id=%s keywords=%s provider=%s tokens=%s",
        url_id,
        len(keywords),
        resp.provider,
        resp.total_tokens,
    )


@celery_app.task(name="url:tag_extraction", bind=True)
def url_tag_extraction(self: Task, *, url_id: str) -> dict[str, object]:
    return run_job(
        self,
        job_type="url:tag_extraction",
        payload={"url_id": url_id},
        handler=handle_tag_extraction,
    )

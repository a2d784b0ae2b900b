import logging

from fastapi import APIRouter, Depends, HTTPException

from src.api.deps import get_entitlement_repo, get_optional_user_id, get_post_repo, get_rules
from src.api.schemas import AccessResponse, PostFullResponse, PostPreviewResponse
from src.components.entitlements import AccessDecision, check_full_access
from src.components.entitlements.ports import EntitlementReaderPort
from src.core.ports.db import PostRepoPort, StorageUnavailableError
from src.domain.entities import Post
from src.rules.models import Rules

logger = logging.getLogger(__name__)

router = APIRouter()


def _unavailable(e: StorageUnavailableError, rules: Rules) -> HTTPException:
    logger.warning("Storage unavailable: %s", e)
    return HTTPException(
        status_code=503,
        detail="Storage unavailable",
        headers={"Retry-After": str(rules.payments.retry_after_seconds)},
    )


def _decide(
    post_id: str,
    user_id: str | None,
    posts: PostRepoPort,
    entitlements: EntitlementReaderPort,
    rules: Rules,
) -> tuple[Post, AccessDecision]:
    try:
        post = posts.get_by_id(post_id)
        if post is None:
            raise HTTPException(status_code=404, detail="Post not found")
        is_creator = (
            rules.entitlements.creator_bypass
            and user_id is not None
            and posts.is_creator(user_id, post_id)
        )
        decision = check_full_access(user_id, post_id, is_creator, entitlements)
    except StorageUnavailableError as e:
        raise _unavailable(e, rules) from e
    return post, decision


@router.get("", response_model=list[PostPreviewResponse])
def list_posts(
    posts: PostRepoPort = Depends(get_post_repo),
    rules: Rules = Depends(get_rules),
) -> list[PostPreviewResponse]:
    """Public previews, newest first."""
    try:
        items = posts.list_recent()
    except StorageUnavailableError as e:
        raise _unavailable(e, rules) from e
    return [PostPreviewResponse(**p.preview()) for p in items]


@router.get("/{post_id}", response_model=PostPreviewResponse)
def get_post_preview(
    post_id: str,
    posts: PostRepoPort = Depends(get_post_repo),
    rules: Rules = Depends(get_rules),
) -> PostPreviewResponse:
    try:
        post = posts.get_by_id(post_id)
    except StorageUnavailableError as e:
        raise _unavailable(e, rules) from e
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return PostPreviewResponse(**post.preview())


@router.get("/{post_id}/full", response_model=PostFullResponse)
def get_post_full(
    post_id: str,
    user_id: str | None = Depends(get_optional_user_id),
    posts: PostRepoPort = Depends(get_post_repo),
    entitlements: EntitlementReaderPort = Depends(get_entitlement_repo),
    rules: Rules = Depends(get_rules),
) -> PostFullResponse:
    """Full body for the creator or an entitled buyer."""
    post, decision = _decide(post_id, user_id, posts, entitlements, rules)
    if not decision.has_full_access:
        if decision.reason == "anonymous":
            raise HTTPException(
                status_code=401,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Bearer"},
            )
        raise HTTPException(status_code=403, detail="Purchase required")
    return PostFullResponse(**post.model_dump())


@router.get("/{post_id}/access", response_model=AccessResponse)
def get_post_access(
    post_id: str,
    user_id: str | None = Depends(get_optional_user_id),
    posts: PostRepoPort = Depends(get_post_repo),
    entitlements: EntitlementReaderPort = Depends(get_entitlement_repo),
    rules: Rules = Depends(get_rules),
) -> AccessResponse:
    _, decision = _decide(post_id, user_id, posts, entitlements, rules)
    return AccessResponse.from_decision(post_id, decision)

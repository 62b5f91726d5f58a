import asyncio
import logging

import httpx

from registry_cleanup.adapter import RegistryAdapter
from registry_cleanup.config import RetentionConfig
from registry_cleanup.exceptions import DeletionError
from registry_cleanup.hub import HubAdapter
from registry_cleanup.models import CleanupResult, DeletionOutcome, TagCandidate
from registry_cleanup.policy import deletion_threshold, select_for_deletion, sort_by_recency
from registry_cleanup.registry import RegistryV2Adapter
from registry_cleanup.rest import RestClient
from registry_cleanup.utils import format_timestamp, true_utcnow


def select_adapter(client: RestClient, config: RetentionConfig) -> RegistryAdapter:
    if config.is_hub:
        return HubAdapter(client, config)
    return RegistryV2Adapter(client, config)


async def delete_tag(
    adapter: RegistryAdapter,
    tag: TagCandidate,
    limiter: asyncio.Semaphore,
    config: RetentionConfig,
) -> DeletionOutcome:
    reference = f"{config.repository}:{tag.name}"
    created = format_timestamp(tag.created_at)
    if config.dry_run:
        logging.warning(f"dryrun {created} {reference}")
        return DeletionOutcome(
            name=tag.name, created_at=tag.created_at, succeeded=True, dry_run=True
        )

    async with limiter:
        try:
            await adapter.delete_tag(tag)
        except DeletionError as err:
            logging.error(f"error {created} {reference}: {err}")
            return DeletionOutcome(
                name=tag.name, created_at=tag.created_at, succeeded=False, error=str(err)
            )

    logging.info(f"deleted {created} {reference}")
    return DeletionOutcome(name=tag.name, created_at=tag.created_at, succeeded=True)


async def delete_all_tags(
    adapter: RegistryAdapter,
    tags: list[TagCandidate],
    limiter: asyncio.Semaphore,
    config: RetentionConfig,
) -> list[DeletionOutcome]:
    outcomes: list[DeletionOutcome] = []
    tag_deletion_tasks: list[asyncio.Task[DeletionOutcome]] = [
        asyncio.create_task(delete_tag(adapter, tag, limiter, config)) for tag in tags
    ]
    for completed_task in asyncio.as_completed(tag_deletion_tasks):
        outcomes.append(await completed_task)
    return outcomes


async def run_pipeline(adapter: RegistryAdapter, config: RetentionConfig) -> CleanupResult:
    started_at = true_utcnow()
    limiter = asyncio.Semaphore(config.max_concurrent_requests)

    await adapter.authenticate()
    found_tags = await adapter.discover_tags()
    logging.info(f"Found {len(found_tags)} matching tags in {config.repository}")

    resolved = sort_by_recency(await adapter.resolve_timestamps(found_tags, limiter))
    threshold = deletion_threshold(config.max_age)
    to_delete = select_for_deletion(resolved, config.min_keep, threshold)
    logging.debug(
        f"Keeping {len(resolved) - len(to_delete)} tags, "
        f"{len(to_delete)} tags older than {format_timestamp(threshold)} to delete"
    )

    outcomes = await delete_all_tags(adapter, to_delete, limiter, config)
    deleted = sum(1 for outcome in outcomes if outcome.succeeded)
    failed = len(outcomes) - deleted
    logging.info(
        f"Finished cleanup of {config.repository}: {deleted} deleted, {failed} failed"
    )

    return CleanupResult(
        repository=config.repository,
        backend=adapter.backend,
        started_at=started_at,
        finished_at=true_utcnow(),
        found_tags_count=len(found_tags),
        resolved_tags_count=len(resolved),
        deleted=deleted,
        failed=failed,
        dry_run=config.dry_run,
        outcomes=outcomes,
    )


async def cleanup_registry(
    config: RetentionConfig, transport: httpx.AsyncBaseTransport | None = None
) -> CleanupResult:
    """Apply the retention policy to one repository.

    Fatal errors (protocol, authentication, discovery) propagate; failures
    to resolve or delete single tags are logged and counted instead.
    """
    max_concurrent_requests = config.max_concurrent_requests
    max_keepalive_connections = (max_concurrent_requests // 2) or 1

    async with httpx.AsyncClient(
        headers={"User-Agent": "registry-cleanup"},
        timeout=config.timeout,
        verify=not config.insecure,
        follow_redirects=True,
        limits=httpx.Limits(
            max_connections=max_concurrent_requests,
            max_keepalive_connections=max_keepalive_connections,
        ),
        proxy=config.proxy,
        transport=transport,
        trust_env=False,
    ) as session:
        client = RestClient(session, dump=config.dump)
        adapter = select_adapter(client, config)
        if config.dry_run:
            logging.warning("Running in dry-run mode, found tags will not be deleted")
        return await run_pipeline(adapter, config)

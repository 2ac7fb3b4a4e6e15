"""Load organizations, reviewers, repositories and routing rules from YAML.

Example:

    organizations:
      - name: Acme
        escalation_channel_id: C0123
        team_channel_id: C0456
        notification_destination: channel   # or dm
        default_reviewer: alice
        team_lead: carol
        reviewers:
          - {github_username: alice, slack_user_id: U01}
          - {github_username: carol, slack_user_id: U02, is_team_lead: true}
        repositories:
          - {full_name: acme/api, default_reviewer: alice}
        rules:
          - name: Backend
            priority: 10
            repository: acme/api
            conditions:
              - {type: file_pattern, patterns: ["^src/"]}
            reviewers: [alice]

Reviewers are referenced by github_username within their organization.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, Field, ValidationError

from gitrouter.models.records import NotificationDestination
from gitrouter.store.base import BaseStore

LOG = logging.getLogger("gitrouter.seed")


class SeedError(ValueError):
    """Seed file is invalid or conflicts with stored data."""

    pass


class ReviewerSeed(BaseModel):
    github_username: str
    name: str = ""
    slack_user_id: str | None = None
    is_team_lead: bool = False
    is_active: bool = True


class RepositorySeed(BaseModel):
    full_name: str
    default_reviewer: str | None = None


class RuleSeed(BaseModel):
    name: str
    description: str | None = None
    priority: int = 0
    is_active: bool = True
    repository: str | None = None
    conditions: List[Dict[str, Any]] = Field(default_factory=list)
    reviewers: List[str] = Field(default_factory=list)


class OrganizationSeed(BaseModel):
    name: str
    escalation_channel_id: str | None = None
    team_channel_id: str | None = None
    slack_notifications: bool = True
    notification_destination: NotificationDestination = "channel"
    default_reviewer: str | None = None
    team_lead: str | None = None
    reviewers: List[ReviewerSeed] = Field(default_factory=list)
    repositories: List[RepositorySeed] = Field(default_factory=list)
    rules: List[RuleSeed] = Field(default_factory=list)


class SeedFile(BaseModel):
    organizations: List[OrganizationSeed] = Field(default_factory=list)


class SeedSummary(BaseModel):
    organizations: int = 0
    reviewers: int = 0
    repositories: int = 0
    rules: int = 0


def _reviewer_id(ids: Dict[str, int], username: str | None, org: str) -> int | None:
    if username is None:
        return None
    try:
        return ids[username.lower()]
    except KeyError:
        raise SeedError(f"Organization {org!r}: unknown reviewer {username!r}") from None


def seed_organization(store: BaseStore, org: OrganizationSeed, summary: SeedSummary) -> int:
    """Create one organization with its reviewers, repositories and rules; returns its id."""
    for repo in org.repositories:
        if store.get_repository(repo.full_name) is not None:
            raise SeedError(f"Repository {repo.full_name!r} is already registered")

    organization = store.create_organization(
        org.name,
        escalation_channel_id=org.escalation_channel_id,
        team_channel_id=org.team_channel_id,
        slack_notifications=org.slack_notifications,
        notification_destination=org.notification_destination,
    )
    summary.organizations += 1

    ids: Dict[str, int] = {}
    for reviewer in org.reviewers:
        created = store.create_reviewer(
            organization.id,
            reviewer.github_username,
            name=reviewer.name,
            slack_user_id=reviewer.slack_user_id,
            is_team_lead=reviewer.is_team_lead,
            is_active=reviewer.is_active,
        )
        ids[reviewer.github_username.lower()] = created.id
        summary.reviewers += 1

    store.update_organization(
        organization.id,
        default_reviewer_id=_reviewer_id(ids, org.default_reviewer, org.name),
        team_lead_id=_reviewer_id(ids, org.team_lead, org.name),
    )

    for repo in org.repositories:
        store.create_repository(
            organization.id,
            repo.full_name,
            default_reviewer_id=_reviewer_id(ids, repo.default_reviewer, org.name),
        )
        summary.repositories += 1

    for rule in org.rules:
        store.create_rule(
            organization.id,
            rule.name,
            rule.conditions,
            [_reviewer_id(ids, username, org.name) for username in rule.reviewers],
            priority=rule.priority,
            is_active=rule.is_active,
            description=rule.description,
            repository=rule.repository,
        )
        summary.rules += 1

    LOG.info("Seeded organization %r (id %s)", org.name, organization.id)
    return organization.id


def seed_from_dict(store: BaseStore, data: Dict[str, Any]) -> SeedSummary:
    try:
        seed = SeedFile.model_validate(data or {})
    except ValidationError as e:
        raise SeedError(f"Invalid seed data: {e}") from e
    summary = SeedSummary()
    for org in seed.organizations:
        try:
            seed_organization(store, org, summary)
        except ValidationError as e:
            raise SeedError(f"Organization {org.name!r}: invalid rule: {e}") from e
    return summary


def seed_from_file(store: BaseStore, path: Path) -> SeedSummary:
    """Seed the store from a YAML file."""
    if not path.is_file():
        raise SeedError(f"Seed file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise SeedError(f"Seed file must contain a mapping: {path}")
    return seed_from_dict(store, data)

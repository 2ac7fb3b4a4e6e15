"""Slack message text and Block Kit blocks for review notifications."""

from typing import Any, Dict, List, Sequence, Tuple

from gitrouter.models.records import PullRequestRecord, Reviewer

MAX_LISTED_FILES = 5

Blocks = List[Dict[str, Any]]


def escape_mrkdwn(text: str) -> str:
    """Escape the characters Slack treats as control sequences in mrkdwn."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _title_link(pr: PullRequestRecord) -> str:
    label = f"#{pr.number}: {escape_mrkdwn(pr.title)}"
    if pr.html_url:
        return f"*<{pr.html_url}|{label}>*"
    return f"*{label}*"


def _header(text: str) -> Dict[str, Any]:
    return {"type": "header", "text": {"type": "plain_text", "text": text, "emoji": True}}


def _section(text: str) -> Dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _fields(*pairs: Tuple[str, str]) -> Dict[str, Any]:
    return {
        "type": "section",
        "fields": [{"type": "mrkdwn", "text": f"*{name}:*\n{value}"} for name, value in pairs],
    }


def _button(text: str, action_id: str, url: str | None = None, style: str | None = None) -> Dict[str, Any]:
    button: Dict[str, Any] = {
        "type": "button",
        "text": {"type": "plain_text", "text": text, "emoji": True},
        "action_id": action_id,
    }
    if url:
        button["url"] = url
    if style:
        button["style"] = style
    return button


def format_files(files: Sequence[str], limit: int = MAX_LISTED_FILES) -> str:
    """Bullet list of the first files, with a count of the rest."""
    lines = [f"• `{f}`" for f in files[:limit]]
    remaining = len(files) - limit
    if remaining > 0:
        lines.append(f"_...and {remaining} more files_")
    return "\n".join(lines)


def new_pr_message(pr: PullRequestRecord, mention: Reviewer | None = None) -> Tuple[str, Blocks]:
    """Review request; a channel post mentions the assigned reviewer."""
    text = f"New PR review request: #{pr.number} {pr.title} in {pr.repository}"
    if pr.html_url:
        text += f". View: {pr.html_url}"
    blocks: Blocks = [
        _header(":bell: New PR Review Request"),
        _section(_title_link(pr)),
        _fields(
            ("Repository", pr.repository),
            ("Author", pr.author or "unknown"),
            ("Changes", f"+{pr.additions} / -{pr.deletions}"),
            ("Files", f"{len(pr.files)} files"),
        ),
    ]
    if pr.files:
        blocks.append(_section(f"*Files Changed:*\n{format_files(pr.files)}"))
    if mention and mention.slack_user_id:
        blocks.append(_section(f"Review requested from <@{mention.slack_user_id}>"))
    blocks.append({"type": "divider"})
    if pr.html_url:
        blocks.append({"type": "actions", "elements": [_button(":eyes: View PR", "view_pr", url=pr.html_url)]})
    return text, blocks


def reminder_message(pr: PullRequestRecord, hours_pending: int) -> Tuple[str, Blocks]:
    """Nudge for the assigned reviewer after the reminder threshold."""
    text = f"Reminder: #{pr.number} {pr.title} in {pr.repository} has waited {hours_pending} hours for your review"
    blocks: Blocks = [
        _header(":alarm_clock: PR Review Reminder"),
        _section(
            f"{_title_link(pr)}\n\nThis PR has been waiting for your review for *{hours_pending} hours*."
        ),
        _fields(("Repository", pr.repository)),
        {"type": "divider"},
    ]
    if pr.html_url:
        blocks.append(
            {
                "type": "actions",
                "elements": [_button(":eyes: Review Now", "view_pr", url=pr.html_url, style="primary")],
            }
        )
    return text, blocks


def escalation_message(
    pr: PullRequestRecord,
    reviewer: Reviewer,
    hours_pending: int,
    team_lead: Reviewer | None = None,
) -> Tuple[str, Blocks]:
    """Stale PR alert for the team lead (or escalation channel)."""
    reviewer_name = reviewer.name or reviewer.github_username
    text = (
        f"Stale PR: #{pr.number} {pr.title} in {pr.repository} has awaited review "
        f"from {reviewer_name} for {hours_pending} hours"
    )
    summary = (
        f"{_title_link(pr)}\n\nThis PR has been awaiting review for *{hours_pending} hours* "
        "and may be blocking progress."
    )
    if team_lead and team_lead.slack_user_id:
        summary += f"\n<@{team_lead.slack_user_id}>"
    blocks: Blocks = [
        _header(":rotating_light: Stale PR Alert"),
        _section(summary),
        _fields(("Repository", pr.repository), ("Assigned Reviewer", reviewer_name)),
        {"type": "divider"},
    ]
    if pr.html_url:
        blocks.append({"type": "actions", "elements": [_button(":eyes: View PR", "view_pr", url=pr.html_url)]})
    blocks.append(
        {
            "type": "context",
            "elements": [
                {"type": "mrkdwn", "text": ":warning: Consider reassigning this review to ensure timely feedback."}
            ],
        }
    )
    return text, blocks


def pr_closed_message(pr: PullRequestRecord) -> Tuple[str, Blocks]:
    """Team channel notice that a PR was closed without merging."""
    text = f"PR closed: #{pr.number} {pr.title} in {pr.repository}"
    blocks: Blocks = [
        _section(f":no_entry_sign: {_title_link(pr)} was closed without merging."),
        {"type": "context", "elements": [{"type": "mrkdwn", "text": f"{pr.repository} • Pending reviews cancelled"}]},
    ]
    return text, blocks


def pr_merged_message(pr: PullRequestRecord) -> Tuple[str, Blocks]:
    """Team channel notice that a PR was merged."""
    text = f"PR merged: #{pr.number} {pr.title} in {pr.repository}"
    blocks: Blocks = [
        _section(f":white_check_mark: {_title_link(pr)} was merged."),
        {
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"{pr.repository} • by {pr.author or 'unknown'}"}],
        },
    ]
    return text, blocks

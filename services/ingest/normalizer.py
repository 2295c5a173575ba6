"""
Jira Issue Normalizer
Converts raw Jira REST issue payloads to canonical Ticket format
"""

from typing import Any, Optional

import structlog

from shared.schemas.ticket import Ticket, TicketComment

logger = structlog.get_logger()

# Epic Link custom fields, checked in order when the issue has no parent
EPIC_LINK_FIELDS = ("customfield_10014", "customfield_10008", "customfield_10010")

# Fields requested from the search endpoint
ISSUE_FIELDS = [
    "summary",
    "description",
    "status",
    "issuetype",
    "priority",
    "assignee",
    "reporter",
    "created",
    "updated",
    "parent",
    "subtasks",
    "labels",
    "components",
    "duedate",
    "resolutiondate",
    "resolution",
    "attachment",
    "project",
    *EPIC_LINK_FIELDS,
]

# ADF node types that end a line of text
_BLOCK_NODES = {"paragraph", "heading", "listItem", "codeBlock", "blockquote", "rule"}


def adf_to_text(adf: Any) -> str:
    """
    Flatten an Atlassian Document Format tree to plain text.

    Plain strings (API v2 payloads, JSON exports) pass through unchanged.
    """
    if not adf:
        return ""
    if isinstance(adf, str):
        return adf.strip()

    parts: list[str] = []

    def visit(node: dict) -> None:
        node_type = node.get("type")
        if node_type == "text":
            parts.append(node.get("text", ""))
        elif node_type == "hardBreak":
            parts.append("\n")
        elif node_type in ("mention", "emoji"):
            attrs = node.get("attrs", {})
            parts.append(attrs.get("text") or attrs.get("shortName") or "")
        for child in node.get("content", []) or []:
            visit(child)
        if node_type in _BLOCK_NODES:
            parts.append("\n")

    for node in adf.get("content", []) or []:
        visit(node)

    lines = [line.rstrip() for line in "".join(parts).splitlines()]
    return "\n".join(line for line in lines if line).strip()


class JiraIssueNormalizer:
    """
    Normalizes raw Jira issue data to the Ticket schema.

    Features:
    - Maps nested Jira fields (status, issuetype, assignee, ...) to flat fields
    - Converts ADF descriptions and comments to plain text
    - Resolves the parent from the parent field or a legacy Epic Link field
    """

    def __init__(self, default_project: Optional[str] = None):
        self.default_project = default_project

    def normalize(self, raw: dict) -> Ticket:
        """
        Normalize a raw issue payload to a Ticket.

        Args:
            raw: Issue dict from the Jira REST API (id, key, fields)

        Returns:
            Normalized Ticket
        """
        fields = raw.get("fields", {}) or {}
        status = fields.get("status") or {}
        assignee = fields.get("assignee") or {}
        reporter = fields.get("reporter") or {}
        parent_id, parent_key = self._resolve_parent(fields)

        return Ticket(
            id=str(raw.get("id", "")),
            key=raw.get("key", ""),
            project_key=(fields.get("project") or {}).get("key") or self.default_project,
            summary=fields.get("summary") or "",
            description=adf_to_text(fields.get("description")) or None,
            issue_type=self._name(fields.get("issuetype")) or "",
            status=status.get("name", ""),
            status_category=(status.get("statusCategory") or {}).get("key", ""),
            priority=self._name(fields.get("priority")),
            resolution=self._name(fields.get("resolution")),
            assignee=assignee.get("displayName"),
            assignee_email=assignee.get("emailAddress"),
            assignee_account_id=assignee.get("accountId"),
            reporter=reporter.get("displayName"),
            reporter_email=reporter.get("emailAddress"),
            reporter_account_id=reporter.get("accountId"),
            created=fields.get("created") or "",
            updated=fields.get("updated") or fields.get("created") or "",
            due_date=fields.get("duedate"),
            resolution_date=fields.get("resolutiondate"),
            parent_id=parent_id,
            parent_key=parent_key,
            subtasks=[st.get("key") for st in fields.get("subtasks") or [] if st.get("key")],
            labels=fields.get("labels") or [],
            components=[c.get("name") for c in fields.get("components") or [] if c.get("name")],
            comments=self._normalize_comments(fields.get("comment")),
            attachment_count=len(fields.get("attachment") or []),
        )

    def _name(self, value: Any) -> Optional[str]:
        if isinstance(value, dict):
            return value.get("name")
        return value or None

    def _resolve_parent(self, fields: dict) -> tuple[Optional[str], Optional[str]]:
        """(parent id, parent key) from the parent field, else the first Epic Link"""
        parent = fields.get("parent") or {}
        parent_id = parent.get("id")
        parent_key = parent.get("key")
        if parent_key:
            return parent_id, parent_key

        for field_name in EPIC_LINK_FIELDS:
            link = fields.get(field_name)
            if not link:
                continue
            # A string Epic Link carries only the key
            if isinstance(link, str):
                return parent_id, link
            if isinstance(link, dict) and link.get("key"):
                return link.get("id"), link["key"]
            break

        return parent_id, parent_key

    def _normalize_comments(self, comment_field: Any) -> list[TicketComment]:
        """Normalize the embedded comment page"""
        if not comment_field:
            return []
        normalized = []
        for c in comment_field.get("comments", []) or []:
            normalized.append(TicketComment(
                id=str(c.get("id", "")),
                author=(c.get("author") or {}).get("displayName", "Unknown"),
                body=adf_to_text(c.get("body")),
                created=c.get("created"),
                updated=c.get("updated"),
            ))
        return normalized

    def normalize_many(self, issues: list[dict]) -> list[Ticket]:
        tickets = []
        for raw in issues:
            if not raw.get("id") or not raw.get("key"):
                logger.warning("Skipping issue without id or key", issue=raw.get("key") or raw.get("id"))
                continue
            tickets.append(self.normalize(raw))
        return tickets


# Default normalizer instance
default_normalizer = JiraIssueNormalizer()


def normalize_issue(raw: dict) -> Ticket:
    """Convenience function to normalize an issue"""
    return default_normalizer.normalize(raw)

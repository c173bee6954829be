"""GraphQL documents and paginated resource descriptors for GitHub."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

_ISSUE_FIELDS = """
  id
  databaseId
  number
  title
  body
  state
  createdAt
  updatedAt
  closedAt
  author { login }
  issueType { name }
  labels(first: 20) { nodes { name color } }
  comments(last: 2) { totalCount nodes { createdAt author { login } } }
  reactions { totalCount }
  assignees(first: 10) { nodes { login } }
  milestone { title dueOn }
"""

_PULL_REQUEST_FIELDS = """
  id
  databaseId
  number
  title
  body
  state
  isDraft
  createdAt
  updatedAt
  closedAt
  mergedAt
  author { login }
  labels(first: 20) { nodes { name color } }
  comments(last: 2) { totalCount nodes { createdAt author { login } } }
  assignees(first: 10) { nodes { login } }
  reviewRequests(first: 10) {
    nodes { requestedReviewer { ... on User { login } } }
  }
  reviewDecision
  additions
  deletions
  changedFiles
  headRefName
  baseRefName
"""

_COMMENT_FIELDS = """
  databaseId
  body
  createdAt
  author { login }
"""

_PAGE_INFO = "pageInfo { hasNextPage endCursor }"

REPOSITORY_ISSUES_QUERY = f"""
query($owner: String!, $repo: String!, $first: Int!, $after: String, $states: [IssueState!]) {{
  repository(owner: $owner, name: $repo) {{
    issues(first: $first, after: $after, states: $states,
           orderBy: {{field: UPDATED_AT, direction: ASC}}) {{
      {_PAGE_INFO}
      nodes {{ {_ISSUE_FIELDS} }}
    }}
  }}
}}
"""

REPOSITORY_ISSUES_SINCE_QUERY = f"""
query($owner: String!, $repo: String!, $first: Int!, $after: String, $states: [IssueState!], $since: DateTime!) {{
  repository(owner: $owner, name: $repo) {{
    issues(first: $first, after: $after, states: $states,
           orderBy: {{field: UPDATED_AT, direction: ASC}},
           filterBy: {{since: $since}}) {{
      {_PAGE_INFO}
      nodes {{ {_ISSUE_FIELDS} }}
    }}
  }}
}}
"""

REPOSITORY_PULL_REQUESTS_QUERY = f"""
query($owner: String!, $repo: String!, $first: Int!, $after: String, $states: [PullRequestState!]) {{
  repository(owner: $owner, name: $repo) {{
    pullRequests(first: $first, after: $after, states: $states,
                 orderBy: {{field: UPDATED_AT, direction: ASC}}) {{
      {_PAGE_INFO}
      nodes {{ {_PULL_REQUEST_FIELDS} }}
    }}
  }}
}}
"""

PULL_REQUEST_SEARCH_QUERY = f"""
query($searchQuery: String!, $first: Int!, $after: String) {{
  search(type: ISSUE, query: $searchQuery, first: $first, after: $after) {{
    {_PAGE_INFO}
    nodes {{ ... on PullRequest {{ {_PULL_REQUEST_FIELDS} }} }}
  }}
}}
"""

# GitHub stops paging a search after this many results.
SEARCH_RESULT_LIMIT = 1000

ISSUE_COMMENTS_QUERY = f"""
query($owner: String!, $repo: String!, $number: Int!, $first: Int!, $after: String) {{
  repository(owner: $owner, name: $repo) {{
    issue(number: $number) {{
      comments(first: $first, after: $after) {{
        {_PAGE_INFO}
        nodes {{ {_COMMENT_FIELDS} }}
      }}
    }}
  }}
}}
"""

PULL_REQUEST_COMMENTS_QUERY = f"""
query($owner: String!, $repo: String!, $number: Int!, $first: Int!, $after: String) {{
  repository(owner: $owner, name: $repo) {{
    pullRequest(number: $number) {{
      comments(first: $first, after: $after) {{
        {_PAGE_INFO}
        nodes {{ {_COMMENT_FIELDS} }}
      }}
    }}
  }}
}}
"""

SINGLE_ISSUE_QUERY = f"""
query($owner: String!, $repo: String!, $number: Int!) {{
  repository(owner: $owner, name: $repo) {{
    issue(number: $number) {{ {_ISSUE_FIELDS} }}
  }}
}}
"""

SINGLE_PULL_REQUEST_QUERY = f"""
query($owner: String!, $repo: String!, $number: Int!) {{
  repository(owner: $owner, name: $repo) {{
    pullRequest(number: $number) {{ {_PULL_REQUEST_FIELDS} }}
  }}
}}
"""


class SinceMode(str, Enum):
    """How a listing honours the ``since`` watermark."""

    UNSUPPORTED = "unsupported"
    SERVER = "server"
    SEARCH = "search"


@dataclass(slots=True, frozen=True)
class ListResource:
    """A paginated GitHub connection and how to query it.

    ``SERVER`` listings pass ``since`` as a ``DateTime`` variable to
    ``since_query``. ``SEARCH`` listings render it into ``search_template``
    and page the search connection at ``since_connection_path`` instead.
    """

    name: str
    query: str
    connection_path: tuple[str, ...]
    variables: Mapping[str, Any] = field(default_factory=dict)
    since_mode: SinceMode = SinceMode.UNSUPPORTED
    since_query: str | None = None
    since_variables: Mapping[str, Any] = field(default_factory=dict)
    since_connection_path: tuple[str, ...] | None = None
    search_template: str | None = None

    def build(
        self,
        *,
        page_size: int,
        cursor: str | None,
        since: str | None,
    ) -> tuple[str, dict[str, Any]]:
        """Return the query text and variables for one page."""

        if since is not None and self.since_mode is SinceMode.UNSUPPORTED:
            raise ValueError(f"{self.name} does not support incremental listing")
        if since is not None and self.since_mode is SinceMode.SEARCH:
            if self.since_query is None or self.search_template is None:
                raise ValueError(f"{self.name} has no search query")
            return self.since_query, {
                "searchQuery": self.search_template.format(since=since),
                "first": page_size,
                "after": cursor,
            }

        variables: dict[str, Any] = dict(self.variables)
        variables["first"] = page_size
        variables["after"] = cursor
        if since is None:
            return self.query, variables
        variables.update(self.since_variables)
        variables["since"] = since
        return self.since_query or self.query, variables

    def connection_for(self, since: str | None) -> tuple[str, ...]:
        if since is not None and self.since_connection_path is not None:
            return self.since_connection_path
        return self.connection_path


def repository_issues(owner: str, repo: str) -> ListResource:
    # Full syncs only need open issues; incremental syncs must also see
    # issues that were closed since the watermark.
    return ListResource(
        name="repository.issues",
        query=REPOSITORY_ISSUES_QUERY,
        connection_path=("repository", "issues"),
        variables={"owner": owner, "repo": repo, "states": ["OPEN"]},
        since_mode=SinceMode.SERVER,
        since_query=REPOSITORY_ISSUES_SINCE_QUERY,
        since_variables={"states": ["OPEN", "CLOSED"]},
    )


def repository_pull_requests(owner: str, repo: str) -> ListResource:
    # The pullRequests connection has no updated-since filter, so incremental
    # listings go through search, which covers open, closed and merged PRs.
    return ListResource(
        name="repository.pullRequests",
        query=REPOSITORY_PULL_REQUESTS_QUERY,
        connection_path=("repository", "pullRequests"),
        variables={"owner": owner, "repo": repo, "states": ["OPEN"]},
        since_mode=SinceMode.SEARCH,
        since_query=PULL_REQUEST_SEARCH_QUERY,
        since_connection_path=("search",),
        search_template=f"repo:{owner}/{repo} is:pr updated:>={{since}} sort:updated-asc",
    )


def issue_comments(owner: str, repo: str, number: int) -> ListResource:
    return ListResource(
        name="issue.comments",
        query=ISSUE_COMMENTS_QUERY,
        connection_path=("repository", "issue", "comments"),
        variables={"owner": owner, "repo": repo, "number": number},
    )


def pull_request_comments(owner: str, repo: str, number: int) -> ListResource:
    return ListResource(
        name="pullRequest.comments",
        query=PULL_REQUEST_COMMENTS_QUERY,
        connection_path=("repository", "pullRequest", "comments"),
        variables={"owner": owner, "repo": repo, "number": number},
    )


__all__ = [
    "ISSUE_COMMENTS_QUERY",
    "ListResource",
    "PULL_REQUEST_COMMENTS_QUERY",
    "PULL_REQUEST_SEARCH_QUERY",
    "REPOSITORY_ISSUES_QUERY",
    "REPOSITORY_ISSUES_SINCE_QUERY",
    "REPOSITORY_PULL_REQUESTS_QUERY",
    "SEARCH_RESULT_LIMIT",
    "SINGLE_ISSUE_QUERY",
    "SINGLE_PULL_REQUEST_QUERY",
    "SinceMode",
    "issue_comments",
    "pull_request_comments",
    "repository_issues",
    "repository_pull_requests",
]

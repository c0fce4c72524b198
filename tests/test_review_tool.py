"""Tests for the pull-request review pipeline with fake Bitbucket and agents."""

import pytest

from src.indexer.job_manager import JobPhase
from src.tools.review_tool import (
    Finding,
    ReviewAgent,
    ReviewTool,
    default_synthesize,
    summary_comment,
)
from src.vcs.bitbucket_client import PRDetails

PR_URL = "https://bitbucket.org/acme/shop/pull-requests/7"

PR_DIFF = """diff --git a/src/utils/format.ts b/src/utils/format.ts
--- a/src/utils/format.ts
+++ b/src/utils/format.ts
@@ -1,3 +1,3 @@
 export function formatName(first: string, last: string): string {
-  return `${first} ${last}`;
+  return `${last}, ${first}`;
 }
"""


class FakeBitbucket:
    def __init__(self):
        self.inline = []
        self.summaries = []

    async def get_pr_details(self, workspace, repo_slug, pr_id, token):
        return PRDetails(
            id=pr_id,
            title="Reverse name order",
            description="",
            author="Dana",
            source_branch="feature/names",
            target_branch="main",
            state="OPEN",
        )

    async def get_pr_diff(self, workspace, repo_slug, pr_id, token):
        return PR_DIFF

    async def post_inline_comment(self, workspace, repo_slug, pr_id, token, file_path, line, content):
        self.inline.append((file_path, line, content))
        return str(len(self.inline))

    async def post_summary_comment(self, workspace, repo_slug, pr_id, token, content):
        self.summaries.append(content)
        return "summary"


class StaticAgent(ReviewAgent):
    def __init__(self, name, findings):
        self.name = name
        self.findings = findings
        self.contexts = []

    async def review(self, context):
        self.contexts.append(context)
        return [Finding(**f) for f in self.findings]


class BrokenAgent(ReviewAgent):
    name = "broken"

    async def review(self, context):
        raise RuntimeError("model unavailable")


@pytest.fixture
def bitbucket():
    return FakeBitbucket()


@pytest.fixture
def review_tool(job_manager, graph_store, bitbucket, breakers):
    return ReviewTool(job_manager, graph_store, bitbucket, breakers=breakers)


def test_default_synthesize_dedupes_and_orders():
    findings = [
        Finding("b.ts", 4, "low", "Naming"),
        Finding("a.ts", 3, "medium", "Null check"),
        Finding("a.ts", 3, "high", "null check "),
        Finding("a.ts", None, "critical", "Secret in diff"),
    ]
    result = default_synthesize(findings)
    assert [(f.severity, f.title) for f in result] == [
        ("critical", "Secret in diff"),
        ("high", "null check "),
        ("low", "Naming"),
    ]


def test_summary_comment():
    pr = PRDetails(1, "Tidy", "", "Dana", "f", "main", "OPEN")
    assert "No issues found." in summary_comment(pr, [])
    text = summary_comment(pr, [Finding("a.ts", 1, "high", "x"), Finding("a.ts", 2, "low", "y")])
    assert "2 findings:" in text
    assert text.index("- high: 1") < text.index("- low: 1")


def test_invalid_pr_url(review_tool):
    with pytest.raises(ValueError):
        review_tool.start_review("https://github.com/acme/shop/pull/7", "tok")


def test_review_agent_requires_review():
    class Unfinished(ReviewAgent):
        name = "unfinished"

    with pytest.raises(TypeError):
        Unfinished()


async def test_review_runs_agents_and_posts(review_tool, bitbucket, graph_store, parsed_sample, job_manager):
    await graph_store.replace_repo("acme/shop", parsed_sample)
    first = StaticAgent(
        "logic",
        [
            {"file": "src/utils/format.ts", "line": 2, "severity": "medium", "title": "Order change"},
            {"file": "src/utils/format.ts", "line": None, "severity": "info", "title": "Consider tests"},
        ],
    )
    second = StaticAgent(
        "style",
        [{"file": "src/utils/format.ts", "line": 2, "severity": "high", "title": "order change"}],
    )
    review_tool.register_agent(first)
    review_tool.register_agent(second)
    review_tool.register_agent(BrokenAgent())

    job = review_tool.start_review(PR_URL, "tok")
    queue = await job_manager.subscribe(job.job_id)
    await job.task

    assert job.phase == JobPhase.COMPLETE, job.error
    assert job.repo_id == "acme/shop"
    assert [(f["severity"], f["title"]) for f in job.findings] == [
        ("high", "order change"),
        ("info", "Consider tests"),
    ]
    assert job.findings[0]["agent"] == "style"

    # Only findings with a line become inline comments; one summary follows
    assert [(path, line) for path, line, _ in bitbucket.inline] == [("src/utils/format.ts", 2)]
    assert len(bitbucket.summaries) == 1
    assert "2 findings" in bitbucket.summaries[0]

    context = first.contexts[0]
    assert context.changed_paths == ["src/utils/format.ts"]
    assert "UserService.greet" in [r["name"] for r in context.graph_context["related"]]

    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    agent_events = [(e["agent"], e["status"]) for e in events if e["type"] == "agent"]
    assert ("broken", "failed") in agent_events
    assert ("logic", "complete") in agent_events
    assert events[-1]["type"] == "status" and events[-1]["phase"] == "complete"


async def test_review_without_posting(review_tool, bitbucket):
    review_tool.register_agent(
        StaticAgent("logic", [{"file": "src/utils/format.ts", "line": 2, "severity": "low", "title": "Nit"}])
    )
    job = review_tool.start_review(PR_URL, "tok", post_comments=False)
    await job.task
    assert job.phase == JobPhase.COMPLETE
    assert bitbucket.inline == [] and bitbucket.summaries == []
    assert len(job.findings) == 1


async def test_custom_synthesizer(review_tool):
    review_tool.register_agent(
        StaticAgent("logic", [{"file": "a.ts", "line": 1, "severity": "low", "title": "Nit"}])
    )

    async def drop_everything(findings):
        return []

    review_tool.set_synthesizer(drop_everything)
    job = review_tool.start_review(PR_URL, "tok", post_comments=False)
    await job.task
    assert job.phase == JobPhase.COMPLETE
    assert job.findings == []


async def test_bitbucket_failure_fails_job(review_tool, bitbucket):
    async def boom(*args):
        raise ConnectionError("bitbucket down")

    bitbucket.get_pr_details = boom
    job = review_tool.start_review(PR_URL, "tok")
    await job.task
    assert job.phase == JobPhase.FAILED
    assert "bitbucket down" in job.error

"""Pull-request review pipeline, run as a background job.

The review logic itself lives in pluggable agents. This module fetches the
pull request, assembles the context the agents work from, runs them, merges
their findings, and posts the result back to Bitbucket.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..indexer.graph_store import GraphStore
from ..indexer.job_manager import Job, JobCancelledError, JobKind, JobManager, JobPhase
from ..indexer.repo_identity import parse_bitbucket_pr_url, repo_id_from_slug
from ..resilience.breakers import BITBUCKET, BreakerRegistry, DegradationMode, get_breaker_registry
from ..resilience.circuit_breaker import CircuitOpenError, CircuitState
from ..vcs.bitbucket_client import BitbucketClient, PRDetails
from ..vcs.diff_parser import DiffFile, parse_diff

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3, "info": 4}


@dataclass
class Finding:
    """One review comment proposed by an agent."""

    file: str
    line: Optional[int]
    severity: str
    title: str
    description: str = ""
    category: str = "general"
    suggestion: Optional[str] = None
    agent: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "file": self.file,
            "line": self.line,
            "severity": self.severity,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "agent": self.agent,
        }
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def to_comment(self) -> str:
        text = f"**[{self.severity.upper()}] {self.title}**\n\n{self.description}"
        if self.suggestion:
            text += f"\n\nSuggestion:\n```\n{self.suggestion}\n```"
        return text


@dataclass
class ReviewContext:
    """Everything an agent gets to look at."""

    pr: PRDetails
    repo_id: str
    diff_files: List[DiffFile]
    graph_context: Dict[str, Any] = field(default_factory=dict)
    degradation: DegradationMode = field(default_factory=DegradationMode)

    @property
    def changed_paths(self) -> List[str]:
        return [f.path for f in self.diff_files if f.status != "deleted"]


class ReviewAgent(ABC):
    """Base class for review agents."""

    name = "agent"

    @abstractmethod
    async def review(self, context: ReviewContext) -> List[Finding]:
        """Inspect the pull request context and report findings."""


Synthesizer = Callable[[List[Finding]], Union[List[Finding], Awaitable[List[Finding]]]]


def default_synthesize(findings: List[Finding]) -> List[Finding]:
    """Drop duplicate findings and order the rest by severity, file and line.

    Duplicates share file, line and title; the most severe one is kept.
    """
    best: Dict[tuple, Finding] = {}
    for finding in findings:
        key = (finding.file, finding.line, finding.title.strip().lower())
        current = best.get(key)
        if current is None or SEVERITY_ORDER.get(finding.severity, 99) < SEVERITY_ORDER.get(current.severity, 99):
            best[key] = finding
    return sorted(
        best.values(),
        key=lambda f: (SEVERITY_ORDER.get(f.severity, 99), f.file, f.line or 0),
    )


def summary_comment(pr: PRDetails, findings: List[Finding]) -> str:
    counts: Dict[str, int] = {}
    for finding in findings:
        counts[finding.severity] = counts.get(finding.severity, 0) + 1
    lines = [f"## Automated review: {pr.title}", ""]
    if not findings:
        lines.append("No issues found.")
    else:
        lines.append(f"{len(findings)} findings:")
        for severity in sorted(counts, key=lambda s: SEVERITY_ORDER.get(s, 99)):
            lines.append(f"- {severity}: {counts[severity]}")
    return "\n".join(lines)


class ReviewTool:
    """Runs review jobs.

    Review phases and their percentages:
        fetching-pr 5-15, building-context 20-35, running-agents 40-80,
        synthesizing 85, posting-comments 90, complete 100
    """

    def __init__(
        self,
        job_manager: JobManager,
        graph_store: GraphStore,
        bitbucket: BitbucketClient,
        breakers: Optional[BreakerRegistry] = None,
        agents: Optional[List[ReviewAgent]] = None,
        synthesizer: Optional[Synthesizer] = None,
    ):
        self.job_manager = job_manager
        self.graph_store = graph_store
        self.bitbucket = bitbucket
        self.breakers = breakers or get_breaker_registry()
        self.agents: List[ReviewAgent] = list(agents or [])
        self.synthesizer = synthesizer

    def register_agent(self, agent: ReviewAgent) -> None:
        self.agents.append(agent)
        logger.info(f"Registered review agent: {agent.name}")

    def set_synthesizer(self, synthesizer: Optional[Synthesizer]) -> None:
        self.synthesizer = synthesizer

    def start_review(self, pr_url: str, token: str, post_comments: bool = True) -> Job:
        """Create a review job and run it in the background.

        Raises:
            ValueError: If pr_url is not a Bitbucket pull request URL
        """
        parsed = parse_bitbucket_pr_url(pr_url)
        if parsed is None:
            raise ValueError(f"Invalid Bitbucket pull request URL: {pr_url}")
        workspace, repo_slug, pr_id = parsed

        job = self.job_manager.create_job(
            JobKind.REVIEW, repo_id=repo_id_from_slug(workspace, repo_slug), pr_url=pr_url
        )
        self.job_manager.start(job, self.run_review_job(job, workspace, repo_slug, pr_id, token, post_comments))
        logger.info(f"Started review job {job.job_id} for {pr_url}")
        return job

    async def _step(self, job: Job, phase: JobPhase, percentage: int, **fields) -> None:
        job.cancel_token.raise_if_cancelled()
        await self.job_manager.update_status(job.job_id, phase=phase, percentage=percentage, **fields)

    async def run_review_job(
        self, job: Job, workspace: str, repo_slug: str, pr_id: int, token: str, post_comments: bool
    ) -> None:
        """Job body: never raises; the outcome is recorded on the job."""
        try:
            await self._review(job, workspace, repo_slug, pr_id, token, post_comments)
        except JobCancelledError:
            logger.info(f"Review job {job.job_id} cancelled")
            await self.job_manager.mark_cancelled(job.job_id)
        except Exception as e:
            logger.error(f"Review job {job.job_id} failed: {e}", exc_info=True)
            await self.job_manager.mark_failed(job.job_id, str(e))

    async def _review(
        self, job: Job, workspace: str, repo_slug: str, pr_id: int, token: str, post_comments: bool
    ) -> None:
        # Fetch PR
        await self._step(job, JobPhase.FETCHING_PR, 5)
        pr = await self.bitbucket.get_pr_details(workspace, repo_slug, pr_id, token)
        await self._step(job, JobPhase.FETCHING_PR, 10)
        raw_diff = await self.bitbucket.get_pr_diff(workspace, repo_slug, pr_id, token)
        await self._step(job, JobPhase.FETCHING_PR, 15)

        # Build context
        await self._step(job, JobPhase.BUILDING_CONTEXT, 20)
        context = await self._build_context(job, pr, parse_diff(raw_diff))
        await self._step(job, JobPhase.BUILDING_CONTEXT, 35)

        # Run agents
        findings = await self._run_agents(job, context)

        # Synthesize
        await self._step(job, JobPhase.SYNTHESIZING, 85, agents_running=[], current_file=None)
        final = await self._synthesize(findings)
        logger.info(f"Review {job.job_id}: {len(findings)} raw findings, {len(final)} after synthesis")

        # Post comments
        await self._step(job, JobPhase.POSTING_COMMENTS, 90, findings=[f.to_dict() for f in final])
        if post_comments:
            await self._post_comments(job, workspace, repo_slug, pr_id, token, pr, final)
        else:
            logger.info(f"Comment posting disabled for review {job.job_id}")

        await self._step(job, JobPhase.COMPLETE, 100)

    async def _build_context(self, job: Job, pr: PRDetails, diff_files: List[DiffFile]) -> ReviewContext:
        degradation = self.breakers.get_degradation_mode()
        context = ReviewContext(pr=pr, repo_id=job.repo_id, diff_files=diff_files, degradation=degradation)
        if degradation.no_graph:
            logger.warning(f"Graph unavailable; reviewing {job.repo_id} without graph context")
            return context

        graph = await self.graph_store.get(job.repo_id)
        if graph is None:
            logger.info(f"No knowledge graph for {job.repo_id}; reviewing the diff alone")
            return context
        context.graph_context = graph.neighborhood(context.changed_paths)
        return context

    async def _run_agents(self, job: Job, context: ReviewContext) -> List[Finding]:
        findings: List[Finding] = []
        total = max(len(self.agents), 1)
        await self._step(job, JobPhase.RUNNING_AGENTS, 40)

        for index, agent in enumerate(self.agents):
            job.cancel_token.raise_if_cancelled()
            await self.job_manager.update_status(job.job_id, agents_running=[agent.name])
            await self.job_manager.publish_event(job.job_id, "agent", agent=agent.name, status="started")
            try:
                produced = await agent.review(context)
            except JobCancelledError:
                raise
            except Exception as e:
                logger.error(f"Review agent {agent.name} failed: {e}")
                await self.job_manager.publish_event(
                    job.job_id, "agent", agent=agent.name, status="failed", error=str(e)
                )
                produced = []
            else:
                await self.job_manager.publish_event(
                    job.job_id, "agent", agent=agent.name, status="complete", findings=len(produced)
                )

            for finding in produced:
                finding.agent = finding.agent or agent.name
                findings.append(finding)
                await self.job_manager.publish_event(job.job_id, "finding", finding=finding.to_dict())

            await self._step(job, JobPhase.RUNNING_AGENTS, 40 + round((index + 1) / total * 40))

        return findings

    async def _synthesize(self, findings: List[Finding]) -> List[Finding]:
        if self.synthesizer is None:
            return default_synthesize(findings)
        result = self.synthesizer(findings)
        if inspect.isawaitable(result):
            result = await result
        return list(result)

    async def _post_comments(
        self,
        job: Job,
        workspace: str,
        repo_slug: str,
        pr_id: int,
        token: str,
        pr: PRDetails,
        findings: List[Finding],
    ) -> None:
        if self.breakers.get(BITBUCKET).state == CircuitState.OPEN:
            logger.warning(f"Bitbucket unavailable; not posting comments for review {job.job_id}")
            return

        posted = 0
        try:
            for finding in findings:
                job.cancel_token.raise_if_cancelled()
                if not finding.file or not finding.line:
                    continue
                try:
                    await self.bitbucket.post_inline_comment(
                        workspace, repo_slug, pr_id, token, finding.file, finding.line, finding.to_comment()
                    )
                    posted += 1
                except CircuitOpenError:
                    raise
                except Exception as e:
                    logger.warning(f"Failed to post comment on {finding.file}:{finding.line}: {e}")
            await self.bitbucket.post_summary_comment(workspace, repo_slug, pr_id, token, summary_comment(pr, findings))
        except CircuitOpenError as e:
            logger.warning(f"Stopped posting comments for review {job.job_id}: {e}")
        logger.info(f"Posted {posted} inline comments for review {job.job_id}")

"""Read-only queries over the backlog.

Queries take no locks and may see a slightly stale snapshot. Claim correctness
never depends on them: the arbiter re-checks state atomically on write.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from todo_arbiter.backlog.models import TaskNode, TaskStatus, TaskView
from todo_arbiter.backlog.repository import BacklogRepository

TITLE_HIT_WEIGHT = 2
DESCRIPTION_HIT_WEIGHT = 1


@dataclass(slots=True)
class SearchHit:
    """Search match with its relevance score."""

    task: TaskView
    score: int


class BacklogQueries:
    """Filtering, search and pagination over the task store."""

    def __init__(self, *, repository: BacklogRepository) -> None:
        self.repository = repository

    def list_pending(
        self,
        project: str | None = None,
        *,
        projects: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[TaskView]:
        """Pending tasks, highest priority first, ``task_id`` ascending on ties."""

        return self.repository.list_tasks(
            statuses=(TaskStatus.PENDING,),
            project=project,
            projects=projects,
            limit=limit,
            offset=offset,
        )

    def by_project(
        self,
        project: str,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[TaskView]:
        return self.repository.list_tasks(project=project, limit=limit, offset=offset)

    def search(
        self,
        query: str,
        *,
        status: TaskStatus | None = None,
        project: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[TaskView]:
        return [
            hit.task
            for hit in self.search_hits(
                query,
                status=status,
                project=project,
                limit=limit,
                offset=offset,
            )
        ]

    def search_hits(
        self,
        query: str,
        *,
        status: TaskStatus | None = None,
        project: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[SearchHit]:
        """Case-insensitive token search over title and description.

        Every token must appear. Hits are ordered by score (title hits weigh more),
        then ``task_id``. A blank query returns the plain filtered listing.
        """

        statuses = (status,) if status is not None else None
        tokens = tokenize(query)
        if not tokens:
            tasks = self.repository.list_tasks(
                statuses=statuses,
                project=project,
                limit=limit,
                offset=offset,
            )
            return [SearchHit(task=task, score=0) for task in tasks]

        candidates = self.repository.list_tasks(
            statuses=statuses,
            project=project,
            text_tokens=tokens,
        )
        hits = [SearchHit(task=task, score=score_task(task, tokens)) for task in candidates]
        hits.sort(key=lambda hit: (-hit.score, hit.task.task_id))
        end = offset + limit if limit is not None else None
        return hits[offset:end]

    def tree(
        self,
        *,
        status: TaskStatus | None = None,
        project: str | None = None,
    ) -> list[TaskNode]:
        """Parent/child forest in queue order.

        A task whose parent falls outside the filtered set is shown as a root.
        """

        tasks = self.repository.list_tasks(
            statuses=(status,) if status is not None else None,
            project=project,
        )
        nodes = {task.task_id: TaskNode(task=task) for task in tasks}
        roots: list[TaskNode] = []
        for task in tasks:
            node = nodes[task.task_id]
            parent = nodes.get(task.parent_id) if task.parent_id else None
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)
        return roots

    def count(self, *, status: TaskStatus | None = None, project: str | None = None) -> int:
        return self.repository.count_tasks(
            statuses=(status,) if status is not None else None,
            project=project,
        )


def tokenize(query: str | None) -> tuple[str, ...]:
    if not query:
        return ()
    return tuple(dict.fromkeys(part.casefold() for part in query.split() if part))


def score_task(task: TaskView, tokens: tuple[str, ...]) -> int:
    title = task.title.casefold()
    description = task.description.casefold()
    score = 0
    for token in tokens:
        score += TITLE_HIT_WEIGHT * title.count(token)
        score += DESCRIPTION_HIT_WEIGHT * description.count(token)
    return score

"""Health scores, task suggestions, insight reports and document analysis.

Each operation degrades instead of failing: health and reports fall back to the
deterministic formula, suggestions to an empty list, and analyses to an
``{"error": ...}`` payload. Only ``ValidationError`` reaches the caller.
"""
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db import SessionLocal, Project, Task, SuggestionRecord
from llm import ProviderChain
from errors import NoProviderAvailable, MalformedAIResponse, PersistenceError, ValidationError
from ai_schemas import (
    HealthScore,
    ProjectMetrics,
    TaskSuggestion,
    parse_health,
    parse_report,
    parse_suggestions,
    parse_document_analysis,
)
from analysis_cache import HEALTH_SCORE, get_cached_analysis, store_analysis
from project_health import calculate_fallback_health
from project_metrics import get_project_metrics, get_global_metrics, get_user_projects

logger = logging.getLogger(__name__)

AI_UNAVAILABLE = {"error": "AI features not available"}
MAX_DOCUMENT_CHARS = 12000
PROJECT_TASK_CONTEXT = 20
GLOBAL_TASKS_PER_PROJECT = 5
MAX_TASK_CONTEXT = 30
TEXT_MIME_TYPES = ("application/json", "application/xml", "application/x-yaml")

HEALTH_JSON_SHAPE = '{ "score": number, "status": "excellent"|"good"|"at_risk"|"critical", "insights": string[] }'
SUGGESTION_JSON_SHAPE = ('[{ "title": string, "description": string, "priority": "low"|"medium"|"high", '
                         '"reasoning": string }]')
REPORT_JSON_SHAPE = '{ "summary": string, "achievements": string[], "attention": string[], "recommendations": string[] }'
ANALYSIS_JSON_SHAPE = """{
  "summary": "string",
  "topics": ["string"],
  "suggestedTasks": [{
    "title": "string",
    "description": "string",
    "priority": "low|medium|high",
    "dueDate": "YYYY-MM-DD",
    "category": "Research|Writing|Reading|Review|Admin|Preparation"
  }],
  "deadlines": [{ "date": "YYYY-MM-DD", "description": "string" }],
  "keyConcepts": ["string"]
}"""


def _deadline_text(metrics: ProjectMetrics, missing: str) -> str:
    return str(metrics.days_until_deadline) if metrics.days_until_deadline is not None else missing


def build_health_prompt(metrics: ProjectMetrics) -> str:
    return f"""Calculate a project health score (0-100) based on these metrics:
- Total tasks: {metrics.total_tasks}
- Completed tasks: {metrics.completed_tasks}
- In progress tasks: {metrics.in_progress_tasks}
- Overdue tasks: {metrics.overdue_tasks}
- Days until deadline: {_deadline_text(metrics, "No deadline set")}
- Tasks completed this week: {metrics.tasks_completed_this_week}

Respond with JSON: {HEALTH_JSON_SHAPE}"""


def build_global_health_prompt(metrics: ProjectMetrics) -> str:
    return f"""Calculate a GLOBAL workspace health score (0-100) for a student managing multiple projects, based on these aggregated metrics:
- Total tasks (all projects): {metrics.total_tasks}
- Completed tasks: {metrics.completed_tasks}
- In progress tasks: {metrics.in_progress_tasks}
- Overdue tasks: {metrics.overdue_tasks}
- Days until nearest major deadline: {_deadline_text(metrics, "No upcoming deadlines")}
- Tasks completed this week: {metrics.tasks_completed_this_week}

Respond with JSON: {HEALTH_JSON_SHAPE}"""


def build_report_prompt(health: dict, metrics: ProjectMetrics, workspace: bool = False) -> str:
    if workspace:
        header = "Generate an executive insights report for a student's ENTIRE workspace:"
        metrics_label = "Aggregated Metrics"
        points = """1. Executive summary (2-3 sentences)
2. Key achievements (cross-project)
3. Areas needing attention (bottlenecks, overdue items)
4. Recommended next steps (strategic)"""
    else:
        header = "Generate an insights report for this project:"
        metrics_label = "Metrics"
        points = """1. Executive summary (2-3 sentences)
2. Key achievements
3. Areas needing attention
4. Recommended next steps"""
    return f"""{header}
Health Score: {health.get("score")} ({health.get("status")})
{metrics_label}: {json.dumps(metrics.to_json())}

Provide:
{points}

Respond with JSON: {REPORT_JSON_SHAPE}"""


def build_document_prompt(content: str, today: str) -> str:
    return f"""You are an intelligent academic project assistant. Analyze this document and provide actionable insights.

TODAY'S DATE: {today}

DOCUMENT CONTENT:
{content[:MAX_DOCUMENT_CHARS]}

ANALYZE AND PROVIDE:

1. **Key Topics** - Main subjects that need research or understanding
2. **Suggested Tasks** - Break down the work into actionable tasks with:
   - Clear, specific title
   - Description of what needs to be done
   - Priority (low/medium/high) based on importance and dependencies
   - Estimated due date (YYYY-MM-DD format) - Calculate reasonable deadlines based on:
     * Mentioned dates in the document
     * Logical sequence (research before writing, outline before draft)
     * Typical academic timelines
   - Category (Research, Writing, Reading, Review, Admin, Preparation)
3. **Deadlines** - Any explicit deadlines found in the document
4. **Key Concepts** - Important terms or ideas to understand
5. **Summary** - Brief 2-3 sentence summary of what this document is about

Respond with JSON:
{ANALYSIS_JSON_SHAPE}"""


def build_file_prompt(file_name: str, mime_type: str, today: str) -> str:
    return f"""You are an intelligent academic project assistant. Analyze this uploaded document/image and provide actionable insights.

TODAY'S DATE: {today}
FILE NAME: {file_name}
FILE TYPE: {mime_type}

ANALYZE THE CONTENT AND PROVIDE:

1. **Summary** - Brief 2-3 sentence summary of what this document is about
2. **Key Topics** - Main subjects that need research or understanding
3. **Suggested Tasks** - Break down the work into actionable tasks with:
   - Clear, specific title
   - Description of what needs to be done
   - Priority (low/medium/high) based on importance and dependencies
   - Estimated due date (YYYY-MM-DD format) - Calculate reasonable deadlines
   - Category (Research, Writing, Reading, Review, Admin, Preparation)
4. **Deadlines** - Any explicit deadlines found in the document
5. **Key Concepts** - Important terms or ideas to understand

Respond with JSON:
{ANALYSIS_JSON_SHAPE}"""


def task_context(task: Task) -> Dict[str, Any]:
    return {
        "title": task.title,
        "status": task.status.value if task.status else None,
        "priority": task.priority.value if task.priority else None,
        "dueDate": task.due_date.isoformat() if task.due_date else None,
    }


def is_text_mime(mime_type: str) -> bool:
    mime_type = (mime_type or "").lower()
    return mime_type.startswith("text/") or mime_type in TEXT_MIME_TYPES


async def store_records(session: AsyncSession, records: List[SuggestionRecord]):
    session.add_all(records)
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError(f"Could not store {len(records)} AI suggestion record(s): {e}") from e


class AIService:
    """AI layer over projects and tasks. Stateless apart from the analysis cache."""

    def __init__(self, chain: ProviderChain, session_factory=SessionLocal,
                 now_fn: Callable[[], datetime] = datetime.now):
        self.chain = chain
        self.session_factory = session_factory
        self.now_fn = now_fn

    @property
    def enabled(self) -> bool:
        return self.chain.available

    # --------- Health ---------
    # Reads, provider calls and writes use separate sessions so no pooled
    # connection is held while waiting on a provider.
    async def calculate_project_health(self, project_id: str, user_id: Optional[str] = None) -> dict:
        async with self.session_factory() as session:
            cached = await get_cached_analysis(session, project_id, HEALTH_SCORE, self.now_fn())
            if cached:
                return cached
            metrics = await get_project_metrics(session, project_id, self.now_fn)

        health = await self._ai_health(build_health_prompt(metrics), project_id)
        if health is None:
            return calculate_fallback_health(metrics).to_json()

        data = health.to_json()
        async with self.session_factory() as session:
            try:
                await store_analysis(session, project_id, HEALTH_SCORE, data, self.now_fn())
            except PersistenceError as e:
                logger.error("Health score computed but not cached: %s", e)
        return data

    async def calculate_global_health(self, user_id: str) -> dict:
        # Cache rows reference a real project, so workspace health is recomputed every call
        async with self.session_factory() as session:
            metrics = await get_global_metrics(session, user_id, self.now_fn)
        health = await self._ai_health(build_global_health_prompt(metrics), f"global:{user_id}")
        if health is None:
            return calculate_fallback_health(metrics).to_json()
        return health.to_json()

    async def _ai_health(self, prompt: str, scope: str) -> Optional[HealthScore]:
        if not self.chain.available:
            return None
        try:
            text = await self.chain.complete(prompt, max_tokens=512)
            return parse_health(text)
        except (NoProviderAvailable, MalformedAIResponse) as e:
            logger.error("AI health calculation failed for %s, using fallback: %s", scope, e)
            return None

    # --------- Suggestions ---------
    async def suggest_next_tasks(self, project_id: str, user_id: str) -> List[dict]:
        if not self.chain.available:
            return []

        async with self.session_factory() as session:
            task_res = await session.execute(
                select(Task).where(Task.project_id == project_id)
                .order_by(desc(Task.updated_at)).limit(PROJECT_TASK_CONTEXT)
            )
            tasks = task_res.scalars().all()
            project = await session.get(Project, project_id)

            if project:
                course = f"{project.course_code or ''} {project.course_name or ''}".strip()
                project_line = f"{project.name} - {project.description or 'No description'}"
            else:
                course = ""
                project_line = "Unknown - No description"
            task_lines = [task_context(t) for t in tasks]

        prompt = f"""Given this project context:
Project: {project_line}
Course: {course}
Current tasks: {json.dumps(task_lines)}

Suggest 3 next tasks the user should create or work on.

Respond with JSON array: {SUGGESTION_JSON_SHAPE}"""

        suggestions = await self._ai_suggestions(prompt, f"project {project_id}")
        await self._record_suggestions(project_id, user_id, prompt, suggestions,
                                       {"projectTasks": len(task_lines)})
        return [s.to_json(exclude_none=True) for s in suggestions]

    async def suggest_next_global_tasks(self, user_id: str) -> List[dict]:
        if not self.chain.available:
            return []

        async with self.session_factory() as session:
            projects = await get_user_projects(session, user_id)
            recent_tasks: List[Task] = []
            for project in projects:
                task_res = await session.execute(
                    select(Task).where(Task.project_id == project.id)
                    .order_by(desc(Task.updated_at)).limit(GLOBAL_TASKS_PER_PROJECT)
                )
                recent_tasks.extend(task_res.scalars().all())
            context = [task_context(t) for t in recent_tasks][:MAX_TASK_CONTEXT]

        prompt = f"""Context: User is a student managing {len(projects)} projects.
Recent tasks across all projects: {json.dumps(context)}

Suggest 3 high-impact next tasks the user should focus on across their workspace (or new tasks to add).
Respond with JSON array: {SUGGESTION_JSON_SHAPE}"""

        suggestions = await self._ai_suggestions(prompt, f"user {user_id}")
        await self._record_suggestions(None, user_id, prompt, suggestions,
                                       {"projects": len(projects), "recentTasks": len(context)})
        return [s.to_json(exclude_none=True) for s in suggestions]

    async def generate_suggestions_from_tasks(self, project_id: Optional[str], task_list: List[dict],
                                              user_id: str) -> List[dict]:
        """Suggest tasks from a task list supplied by the client (e.g. a filtered board)."""
        if not isinstance(task_list, list):
            raise ValidationError("Tasks array is required")
        if not self.chain.available:
            return []

        scoped = bool(project_id) and project_id != "all"
        project_context = "All Projects"
        if scoped:
            async with self.session_factory() as session:
                project = await session.get(Project, project_id)
                project_context = (f"{project.name} - {project.description or 'No description'}"
                                   if project else "Unknown Project")

        today = self.now_fn().date().isoformat()
        prompt = f"""You are an AI assistant for a student project management app.
Analyze these existing tasks and suggest 3 NEW tasks that would help the user make progress.

TODAY'S DATE: {today}

Project Context: {project_context}
Current Tasks:
{json.dumps(task_list[:MAX_TASK_CONTEXT], indent=2, default=str)}

Based on these tasks:
1. Identify gaps or missing steps
2. Suggest complementary tasks that would help complete the work
3. Recommend preparatory or follow-up tasks
4. Suggest realistic due dates based on task complexity and existing deadlines

Respond ONLY with a JSON array: [{{ "title": string, "description": string, "priority": "low"|"medium"|"high", "dueDate": "YYYY-MM-DD", "reasoning": string }}]"""

        suggestions = await self._ai_suggestions(prompt, project_context)
        await self._record_suggestions(project_id if scoped else None, user_id, prompt,
                                       suggestions, {"providedTasks": len(task_list)})
        return [s.to_json(exclude_none=True) for s in suggestions]

    async def _ai_suggestions(self, prompt: str, scope: str) -> List[TaskSuggestion]:
        try:
            text = await self.chain.complete(prompt, max_tokens=1024)
            return parse_suggestions(text)
        except (NoProviderAvailable, MalformedAIResponse) as e:
            logger.error("AI suggestions failed for %s: %s", scope, e)
            return []

    async def _record_suggestions(self, project_id: Optional[str], user_id: str, prompt: str,
                                  suggestions: List[TaskSuggestion], context: dict):
        if not suggestions:
            return
        records = [
            SuggestionRecord(
                project_id=project_id,
                user_id=user_id,
                type="task_suggestion",
                prompt=prompt[:500],
                response=json.dumps(s.to_json(exclude_none=True)),
                context=context,
            )
            for s in suggestions
        ]
        async with self.session_factory() as session:
            try:
                await store_records(session, records)
            except PersistenceError as e:
                logger.error("Suggestions returned without being recorded: %s", e)

    # --------- Reports ---------
    async def generate_insights_report(self, project_id: str, user_id: Optional[str] = None) -> dict:
        async with self.session_factory() as session:
            metrics = await get_project_metrics(session, project_id, self.now_fn)
        health = await self.calculate_project_health(project_id, user_id)
        summary = f"Project has {metrics.completed_tasks}/{metrics.total_tasks} tasks completed."
        return await self._build_report(health, metrics, summary, workspace=False)

    async def generate_global_insights_report(self, user_id: str) -> dict:
        async with self.session_factory() as session:
            metrics = await get_global_metrics(session, user_id, self.now_fn)
        health = await self.calculate_global_health(user_id)
        summary = (f"You have completed {metrics.completed_tasks} out of {metrics.total_tasks} "
                   "tasks across all projects.")
        return await self._build_report(health, metrics, summary, workspace=True)

    async def _build_report(self, health: dict, metrics: ProjectMetrics, summary: str, workspace: bool) -> dict:
        fallback = {"health": health, "metrics": metrics.to_json(), "summary": summary, "recommendations": []}
        if not self.chain.available:
            return fallback
        try:
            text = await self.chain.complete(build_report_prompt(health, metrics, workspace), max_tokens=1024)
            report = parse_report(text)
        except (NoProviderAvailable, MalformedAIResponse) as e:
            logger.error("Report generation failed, using summary template: %s", e)
            return fallback
        return {"health": health, "metrics": metrics.to_json(), **report.to_json()}

    # --------- Document analysis ---------
    async def analyze_document(self, content: str, project_id: Optional[str], user_id: str) -> dict:
        if not content or not content.strip():
            raise ValidationError("Content is required")
        if not self.chain.available:
            return dict(AI_UNAVAILABLE)

        prompt = build_document_prompt(content, self.now_fn().date().isoformat())
        try:
            text = await self.chain.complete(prompt, max_tokens=2048)
            analysis = parse_document_analysis(text).to_json()
        except (NoProviderAvailable, MalformedAIResponse) as e:
            logger.error("Document analysis failed: %s", e)
            return {"error": f"Analysis failed: {e}"}

        await self._record_analysis(project_id, user_id, "document_analysis", analysis)
        return analysis

    async def analyze_file(self, data: bytes, mime_type: str, file_name: str,
                           project_id: Optional[str], user_id: str) -> dict:
        """Analyze an uploaded file. Plain-text files go through document analysis."""
        if not data:
            raise ValidationError("File is required")
        if is_text_mime(mime_type):
            return await self.analyze_document(data.decode("utf-8", errors="replace"), project_id, user_id)
        if not self.chain.available:
            return dict(AI_UNAVAILABLE)

        prompt = build_file_prompt(file_name, mime_type, self.now_fn().date().isoformat())
        try:
            text = await self.chain.complete_with_file(prompt, data, mime_type, max_tokens=4096)
            analysis = parse_document_analysis(text).to_json()
        except (NoProviderAvailable, MalformedAIResponse) as e:
            logger.error("File analysis failed for %s: %s", file_name, e)
            return {"error": f"File analysis failed: {e}"}

        if project_id:
            await self._record_analysis(project_id, user_id, "file_analysis", analysis)
        return analysis

    async def _record_analysis(self, project_id: Optional[str], user_id: str, kind: str, analysis: dict):
        record = SuggestionRecord(project_id=project_id, user_id=user_id, type=kind,
                                  response=json.dumps(analysis))
        async with self.session_factory() as session:
            try:
                await store_records(session, [record])
            except PersistenceError as e:
                logger.error("%s returned without being recorded: %s", kind, e)

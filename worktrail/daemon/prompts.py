"""Prompt assembly for each tier."""

import json
from typing import Optional, Sequence

from .analysis import AnalysisRequest, ImagePart
from .models import Evidence, GapInfo, SummaryRecord, Tier, TimelineEntry


BASE_PROMPT = """You summarize a user's work screen. The input is the screenshots from the \
last 2 minutes (in time order) and the AI summaries of previous 2-minute windows.
Summarize strictly from the evidence; do not guess. Write "unknown" when evidence is insufficient.
Keep the output short and aggregatable: action + object + change. Distinguish browsing from operating.

Classification rules:
- If a task/behavior directory is provided, classify activity into it.
- A window may contain up to 3 activities. category_type, category_name and subtask_name are
  parallel lists ordered by importance (primary activity first).
- category_type items are "task", "behavior", "new_task" or "new_behavior".
- subtask_name items are a subtask of the named task, or an empty string.
- Without a directory, still fill the lists using new_task / new_behavior with your own names.
- New behavior names should be moderately specific ("asking ChatGPT technical questions",
  not "browsing" and not "searching for 2025 JS framework comparisons").

Duration rule:
- Count how many consecutive previous windows had the same category_name[0], add the current
  window, and report duration_minutes. A new activity or no history means duration_minutes = 2.

Reply with exactly this JSON and nothing else:
{
  "category_type": ["task", "behavior"],
  "category_name": ["task name", "behavior name"],
  "subtask_name": ["subtask or empty", ""],
  "task_status": "start/continue/switch/end/unknown",
  "interaction_mode": "browse/operate/mixed/unknown",
  "browse_content": "what was viewed or unknown",
  "operate_action": "what was done or unknown",
  "core_action": "the key action",
  "context": "app/window/file/page/keywords",
  "content_change": "added/modified/deleted/none",
  "progress": "done/advanced/none",
  "blockers": "none or the problem",
  "next_intent": "next intent or unknown",
  "confidence": "high/medium/low",
  "duration_minutes": 2
}"""

MID_PROMPT = """You summarize a user's work screen. The input is the 2-minute AI summaries of \
the last 10 minutes and previous 10-minute summaries.
Summarize strictly from the evidence; do not guess. Write "unknown" when evidence is insufficient.
Deduplicate, focus on changes and progress, and link them into a clear task trail.
Prefer real operations over browsing; ignore short switches and noise.
The activity timeline has already been computed and is provided; use it as is.

Reply with exactly this JSON and nothing else:
{
  "task_main": "main line of work, grouped by task/behavior",
  "key_progress": "only new results or changes",
  "key_objects": "apps/files/modules/pages/keywords",
  "content_change": "added/modified/deleted/none",
  "blockers": "none or the problem",
  "next_step": "next step or unknown",
  "confidence": "high/medium/low"
}"""

TOP_PROMPT = """You summarize a user's work screen. The input is the latest 10-minute \
summaries of the past hour and earlier 10-minute summaries.
Summarize strictly from the evidence; do not guess. Write "unknown" when evidence is insufficient.
Highlight milestones, key decisions, important risks and the overall direction.
Time distribution has already been computed and is provided; use it as is.

Reply with exactly this JSON and nothing else:
{
  "achievements": ["achievement 1", "achievement 2"],
  "task_chain": "tasks in time order",
  "key_output": "code/docs/config/conclusions",
  "blockers": "none or the problem",
  "next_direction": "next direction or unknown",
  "confidence": "high/medium/low"
}"""


class PromptBuilder:
    """Builds ``AnalysisRequest`` parts in a fixed order: instructions,
    taxonomy, gap warning, focus windows, history, then evidence."""

    def build_base(
        self,
        evidence: Sequence[Evidence],
        history: Sequence[SummaryRecord],
        gap: Optional[GapInfo] = None,
        taxonomy_text: str = "",
        focus_text: str = "",
    ) -> AnalysisRequest:
        request = AnalysisRequest(tier=Tier.BASE, parts=[BASE_PROMPT])

        if taxonomy_text:
            request.parts.append(
                "\n[Task and behavior directory]\n"
                "Classify activity into these tasks and behaviors. Prefer existing entries; "
                "use new_task / new_behavior only when nothing fits. To add a subtask to an "
                "existing task, use category_type \"task\" with the task name and the new subtask name.\n"
                f"{taxonomy_text}"
            )

        if gap is not None:
            request.parts.append(
                "\n[Gap warning]\n"
                f"The last summary was at {gap.last_record_time:%H:%M:%S}, about {gap.gap_minutes} "
                "minutes ago. Monitoring was not running in between and activity was not recorded.\n"
                "- The history below is not continuous; do not assume nothing changed.\n"
                "- Restart duration_minutes at 2; do not add time from before the gap.\n"
                "- If the task matches the one before the gap, report task_status \"continue\"."
            )

        self._add_focus(request, focus_text, "these 2 minutes")

        if history:
            request.parts.append(
                f"\n[Previous {len(history)} 2-minute summaries]\n{self.format_history(history, Tier.BASE)}"
            )

        request.parts.append(f"\n[{len(evidence)} screenshots of the current 2 minutes, in time order]")
        for item in evidence:
            request.parts.append(ImagePart(data=item.payload, mime_type=item.mime_type))
        return request

    def build_mid(
        self,
        children: Sequence[SummaryRecord],
        history: Sequence[SummaryRecord],
        timeline: Sequence[TimelineEntry] = (),
        taxonomy_text: str = "",
        focus_text: str = "",
    ) -> AnalysisRequest:
        request = AnalysisRequest(tier=Tier.MID, parts=[MID_PROMPT])

        if taxonomy_text:
            request.parts.append(f"\n[Task and behavior directory]\n{taxonomy_text}")
        self._add_focus(request, focus_text, "these 10 minutes")

        if history:
            request.parts.append(
                f"\n[Previous {len(history)} 10-minute summaries]\n{self.format_history(history, Tier.MID)}"
            )
        request.parts.append(
            f"\n[Latest {len(children)} 2-minute summaries]\n{self.format_history(children, Tier.BASE)}"
        )
        request.parts.append(f"\n[Activity timeline]\n{self._format_entries(timeline)}")
        return request

    def build_top(
        self,
        recent: Sequence[SummaryRecord],
        earlier: Sequence[SummaryRecord],
        distribution: Sequence[TimelineEntry] = (),
        miscellaneous: Sequence[TimelineEntry] = (),
        taxonomy_text: str = "",
        focus_text: str = "",
    ) -> AnalysisRequest:
        request = AnalysisRequest(tier=Tier.TOP, parts=[TOP_PROMPT])

        if taxonomy_text:
            request.parts.append(f"\n[Task and behavior directory]\n{taxonomy_text}")
        self._add_focus(request, focus_text, "this hour")

        if earlier:
            request.parts.append(
                f"\n[Earlier {len(earlier)} 10-minute summaries]\n{self.format_history(earlier, Tier.MID)}"
            )
        request.parts.append(
            f"\n[Latest {len(recent)} 10-minute summaries]\n{self.format_history(recent, Tier.MID)}"
        )
        request.parts.append(
            f"\n[Time distribution]\n{self._format_entries(distribution)}"
            f"\n[Miscellaneous]\n{self._format_entries(miscellaneous)}"
        )
        return request

    def format_history(self, records: Sequence[SummaryRecord], tier: Tier) -> str:
        blocks = []
        for i, record in enumerate(records, 1):
            fields = []
            for key, value in record.to_dict().items():
                if key in ("timestamp", "tier"):
                    continue
                if isinstance(value, (dict, list)):
                    value = json.dumps(value, ensure_ascii=False)
                fields.append(f"  {key}: {value}")
            blocks.append(f"--- [{tier.value} #{i}] {self._time_span(record)} ---\n" + "\n".join(fields))
        return "\n\n".join(blocks)

    def _time_span(self, record: SummaryRecord) -> str:
        if record.timestamp is None:
            return "unknown"
        return f"{record.window_start:%H:%M:%S}-{record.timestamp:%H:%M:%S}"

    def _format_entries(self, entries: Sequence[TimelineEntry]) -> str:
        if not entries:
            return "(none)"
        return "\n".join(json.dumps(e.to_dict(), ensure_ascii=False) for e in entries)

    def _add_focus(self, request: AnalysisRequest, focus_text: str, period: str) -> None:
        if not focus_text:
            return
        request.parts.append(
            f"\n[Focused windows during {period}]\n"
            "Format: \"app - window title\" start-end\n"
            f"{focus_text}"
        )

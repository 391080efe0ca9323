"""
Relationship History Aggregator

Keeps the bounded long-term memory for each client: a regenerated
cumulative summary, the most significant key moments, the trajectory
series, action items carried across meetings, and how each participant's
communication style has evolved.

Summary compression is delegated to the analyzer. Everything else here
is deterministic list bookkeeping.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.records import HistoricalContext, RelationshipHistory, format_datetime, utcnow
from ..core.repositories import RelationshipHistoryRepository


logger = logging.getLogger(__name__)


def _sentiment_for(trajectory: Optional[str]) -> str:
    if trajectory == "Strengthening":
        return "positive"
    if trajectory in ("Declining", "Critical"):
        return "negative"
    return "neutral"


class RelationshipHistoryAggregator:
    """
    Maintains ClientRelationshipHistory records.

    Bounds:
    - key moments: 15 (up to 3 added per analysis)
    - trajectory points: 50
    - style history per participant: 20
    - action items: 50

    Oldest entries are evicted first in every list.

    Usage:
        aggregator = RelationshipHistoryAggregator(RelationshipHistoryRepository(db), analyzer)
        history = aggregator.load(client_id)
        trend = aggregator.trend_label(history)
        aggregator.refresh(client_id, result)  # compress summary + merge + save
    """

    MAX_KEY_MOMENTS = 15
    NEW_KEY_MOMENTS_PER_ANALYSIS = 3
    MAX_TRAJECTORY_POINTS = 50
    MAX_STYLE_HISTORY = 20
    MAX_ACTION_ITEMS = 50
    TREND_WINDOW = 5

    def __init__(self, histories: RelationshipHistoryRepository, analyzer=None):
        """
        Args:
            histories: History repository
            analyzer: Object with compress_history(old_summary, result) -> str
        """
        self.histories = histories
        self.analyzer = analyzer

    def load(self, client_id: str) -> Optional[RelationshipHistory]:
        return self.histories.get(client_id)

    # ========================================================================
    # TREND & CONTEXT
    # ========================================================================

    @classmethod
    def trend_label(cls, history: Optional[RelationshipHistory]) -> str:
        """
        Compare the first and last of the most recent trajectory points.

        Returns:
            "<first> → <last> over <n> analyses", or "First analysis" when
            fewer than two points exist
        """
        if history is None:
            return "First analysis"

        recent = history.trajectory_history[-cls.TREND_WINDOW:]
        if len(recent) < 2:
            return "First analysis"

        first = recent[0].get("trajectory")
        last = recent[-1].get("trajectory")
        return f"{first} → {last} over {len(recent)} analyses"

    def build_historical_context(self, history: RelationshipHistory) -> HistoricalContext:
        """Condense a history record into the analyzer's historical context."""
        moments = [
            f"{m.get('date', '')[:10]}: \"{m.get('quote', '')}\" ({m.get('significance', '')})"
            for m in history.key_moments[-5:]
        ]
        return HistoricalContext(
            cumulative_summary=history.cumulative_summary,
            total_previous_meetings=history.total_meetings_analyzed,
            trajectory_trend=self.trend_label(history),
            key_historical_moments=moments,
        )

    # ========================================================================
    # SUMMARY
    # ========================================================================

    @staticmethod
    def fallback_summary(result: Dict[str, Any]) -> str:
        """One-line summary used when compression fails."""
        bottom_line = result.get("bottomLine") or {}
        return (
            f"Latest analysis: {bottom_line.get('trajectory', 'Unknown')} trajectory, "
            f"{bottom_line.get('churnRisk', 'Unknown')} churn risk. "
            f"Key issue: {bottom_line.get('whatsReallyGoingOn', 'Not specified')}"
        )

    def summarize(self, old_summary: Optional[str], result: Dict[str, Any]) -> str:
        """
        Compress the previous summary and the new result into fresh prose.

        Never raises; falls back to the templated one-liner.
        """
        if self.analyzer is None:
            return self.fallback_summary(result)

        try:
            summary = self.analyzer.compress_history(old_summary, result)
            if summary and summary.strip():
                return summary.strip()
            logger.warning("History compression returned an empty summary, using fallback")
        except Exception as e:
            logger.warning(f"History compression failed, using fallback summary: {e}")

        return self.fallback_summary(result)

    # ========================================================================
    # MERGE
    # ========================================================================

    def merge(
        self,
        client_id: str,
        existing: Optional[RelationshipHistory],
        result: Dict[str, Any],
        summary: str,
        now: Optional[datetime] = None,
    ) -> RelationshipHistory:
        """
        Fold one analysis result into the history (pure, no I/O).

        Args:
            client_id: Client the history belongs to
            existing: Current history, or None for the first analysis
            result: Analysis result
            summary: Regenerated cumulative summary
            now: Timestamp for the new points (default: now)

        Returns:
            New or updated RelationshipHistory
        """
        now = now or utcnow()
        stamp = format_datetime(now)
        bottom_line = result.get("bottomLine") or {}
        trajectory = bottom_line.get("trajectory")

        history = existing or RelationshipHistory(client_id=client_id, first_analysis_date=now)

        history.cumulative_summary = summary

        point = {
            "date": stamp,
            "trajectory": trajectory,
            "churn_risk": bottom_line.get("churnRisk"),
            "confidence": bottom_line.get("clientConfidence"),
        }
        history.trajectory_history = (history.trajectory_history + [point])[-self.MAX_TRAJECTORY_POINTS:]

        new_moments = [
            {
                "date": stamp,
                "quote": moment.get("quote", ""),
                "significance": moment.get("deepMeaning", ""),
                "sentiment": _sentiment_for(trajectory),
            }
            for moment in (result.get("criticalMoments") or [])[: self.NEW_KEY_MOMENTS_PER_ANALYSIS]
        ]
        history.key_moments = (history.key_moments + new_moments)[-self.MAX_KEY_MOMENTS:]

        history.participant_profiles = self._merge_participants(
            history.participant_profiles, result.get("communicationStyles") or [], stamp
        )
        history.action_item_history = self._merge_action_items(
            history.action_item_history, result.get("meetingActionItems") or [], stamp
        )

        history.total_meetings_analyzed += 1
        if history.first_analysis_date is None:
            history.first_analysis_date = now
        history.last_analysis_date = now
        history.last_updated = now

        return history

    def _merge_participants(
        self, profiles: List[Dict[str, Any]], styles: List[Dict[str, Any]], stamp: str
    ) -> List[Dict[str, Any]]:
        merged = [dict(p, style_history=list(p.get("style_history") or [])) for p in profiles]
        by_name = {p.get("name"): p for p in merged}

        for style in styles:
            name = style.get("participant")
            if not name:
                continue
            entry = {"date": stamp, "style": style.get("style", "")}
            profile = by_name.get(name)
            if profile is None:
                profile = {
                    "name": name,
                    "current_style": style.get("style", ""),
                    "style_history": [entry],
                    "notes": style.get("evolution", ""),
                }
                merged.append(profile)
                by_name[name] = profile
            else:
                profile["current_style"] = style.get("style", profile.get("current_style", ""))
                profile["style_history"] = (profile["style_history"] + [entry])[-self.MAX_STYLE_HISTORY:]
                if style.get("evolution"):
                    profile["notes"] = style["evolution"]

        return merged

    def _merge_action_items(
        self, items: List[Dict[str, Any]], new_items: List[Dict[str, Any]], stamp: str
    ) -> List[Dict[str, Any]]:
        merged = [dict(i) for i in items]
        index = {i.get("item", "").strip().lower(): i for i in merged}

        for new in new_items:
            text = (new.get("item") or "").strip()
            if not text:
                continue
            existing = index.get(text.lower())
            if existing is not None:
                existing["status"] = new.get("status", existing.get("status"))
                existing["owner"] = new.get("owner") or existing.get("owner")
                existing["last_seen"] = stamp
            else:
                item = {
                    "item": text,
                    "owner": new.get("owner", ""),
                    "status": new.get("status", ""),
                    "first_seen": stamp,
                    "last_seen": stamp,
                }
                merged.append(item)
                index[text.lower()] = item

        return merged[-self.MAX_ACTION_ITEMS:]

    # ========================================================================
    # PERSISTENCE
    # ========================================================================

    def update(self, client_id: str, result: Dict[str, Any], summary: str) -> RelationshipHistory:
        """Merge a result with an already-compressed summary and save."""
        history = self.merge(client_id, self.histories.get(client_id, strict=True), result, summary)
        self.histories.save(history)
        logger.info(
            f"Updated relationship history for client {client_id} "
            f"({history.total_meetings_analyzed} meetings analyzed)"
        )
        return history

    def refresh(self, client_id: str, result: Dict[str, Any]) -> RelationshipHistory:
        """Fetch current history, compress its summary with the new result, merge and save."""
        existing = self.histories.get(client_id, strict=True)
        summary = self.summarize(existing.cumulative_summary if existing else None, result)
        history = self.merge(client_id, existing, result, summary)
        self.histories.save(history)
        logger.info(
            f"Refreshed relationship history for client {client_id} "
            f"({history.total_meetings_analyzed} meetings analyzed)"
        )
        return history

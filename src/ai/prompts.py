"""
Prompt templates for relationship analysis.

Contains the system prompts and builder functions for:
- the three-transcript relationship analysis (JSON output)
- cumulative history compression
- follow-up questions about a finished analysis
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from ..core.records import TranscriptBundle


# ============================================================================
# SYSTEM PROMPTS
# ============================================================================

ANALYSIS_SYSTEM_PROMPT = """You are a client relationship analyst evaluating meeting transcripts to assess relationship health in agency-client relationships.
Your role is to identify patterns in communication, engagement levels, and sentiment changes over time.

You will be provided with three transcripts (Oldest, Middle, Recent) and context about the client.
Analyze the trajectory across these three points in time using objective observations and factual evidence.
Provide balanced, concise insights focused on actionable patterns rather than subjective interpretations.

You MUST return ONLY a valid JSON object matching the requested structure. No text before or after it."""

COMPRESSION_SYSTEM_PROMPT = """You maintain the long-term relationship memory for an agency account team.
You merge an existing relationship summary with the findings of a new analysis into one updated summary.
Write plain prose, no headings or bullet points, at most 200 words."""

FOLLOW_UP_SYSTEM_PROMPT = """You are a client relationship analyst. You have analyzed a set of meeting transcripts and provided a report.
Now the user is asking a follow-up question. Answer directly and objectively, citing specific quotes or patterns
from the transcripts when relevant. Keep your answer concise (2-3 sentences) unless the question asks for detail."""


# Shape of the analysis result. Field names are part of the stored record format.
ANALYSIS_RESPONSE_SHAPE = {
    "trajectoryAnalysis": {
        "engagement": "Increasing | Stable | Declining",
        "meetingLength": "Shorter | Stable | Longer",
        "energy": "Rising | Falling | Flat",
        "futureTalk": "More | Less | Same",
    },
    "subtleSignals": {
        "strengtheningIndicators": ["positive signal"],
        "concerningPatterns": ["negative signal"],
    },
    "criticalMoments": [
        {
            "quote": "exact quote",
            "surfaceRead": "initial interpretation",
            "deepMeaning": "contextual interpretation based on patterns",
            "implication": "potential impact on the relationship",
            "confidence": "High | Medium | Low",
            "type": "Warning | Opportunity | Neutral",
        }
    ],
    "bottomLine": {
        "trajectory": "Strengthening | Stable | Declining | Critical",
        "churnRisk": "Low | Medium | High | Immediate",
        "clientConfidence": "integer 1-10",
        "confidenceInAssessment": "High | Medium | Low",
        "whatsReallyGoingOn": "one sentence",
        "likelyUnderlyingDriverIfChurn": "one sentence",
    },
    "actionPlan": [{"action": "what to do", "why": "reason", "how": "exact language or approach"}],
    "meetingActionItems": [
        {"item": "task", "owner": "person", "status": "Open | Completed | Overdue", "notes": "context"}
    ],
    "communicationStyles": [
        {"participant": "name", "style": "style label", "traits": ["trait"], "evolution": "how it changed"}
    ],
    "sarcasmInstances": [{"quote": "exact quote", "interpretation": "what it signals"}],
    "blindSpotsForYourPersonality": "optional, only when a pod leader personality profile is given",
}

CHURN_RISK_CALIBRATION = """CHURN RISK CALIBRATION:
- Low: Client is engaged, shares wins, talks about future, responds promptly. Minor issues are normal.
- Medium: Some warning signs but still engaged overall. May need attention but not urgent.
- High: Multiple strong warning signs, clear disengagement, mentions competitors/budget cuts.
- Immediate: Client has explicitly mentioned leaving, stopped responding, or terminated services.

Occasional rushed meetings or busy periods are NORMAL and not automatically high risk.
Focus on sustained patterns across all transcripts, not isolated incidents."""


# ============================================================================
# PROMPT BUILDERS
# ============================================================================


def build_context_section(bundle: TranscriptBundle) -> str:
    """Client profile and free-text context block shared by all prompts."""
    lines = ["CONTEXT & BACKGROUND:"]
    if bundle.client_profile:
        profile = bundle.client_profile
        lines.append(f"Client Name: {profile.name}")
        lines.append(f"Average Spend: {profile.monthly_spend or 'Not specified'}")
        lines.append(f"Relationship Duration: {profile.duration or 'Not specified'}")
        lines.append(f"Client Profile Notes: {profile.notes or 'None'}")
    lines.append(f"Additional User Notes: {bundle.context or 'None provided.'}")
    return "\n".join(lines)


def build_historical_section(bundle: TranscriptBundle) -> str:
    history = bundle.historical_context
    if history is None:
        return ""

    lines = [
        "RELATIONSHIP HISTORY (from previous analyses):",
        f"Meetings analyzed so far: {history.total_previous_meetings}",
        f"Trajectory trend: {history.trajectory_trend}",
        f"Cumulative summary: {history.cumulative_summary or 'None'}",
    ]
    if history.key_historical_moments:
        lines.append("Key historical moments:")
        lines.extend(f"- {moment}" for moment in history.key_historical_moments)
    lines.append("Use this history to judge whether current signals are new or part of a longer pattern.")
    return "\n".join(lines)


def build_feedback_section(bundle: TranscriptBundle) -> str:
    feedback = bundle.feedback
    if feedback is None or feedback.is_empty():
        return ""

    lines = ["USER FEEDBACK ON YOUR PREVIOUS ANALYSIS (correct these in this run):"]
    if feedback.inaccuracies:
        lines.append(f"Inaccuracies to correct: {feedback.inaccuracies}")
    if feedback.additional_context:
        lines.append(f"Additional context: {feedback.additional_context}")
    if feedback.focus_areas:
        lines.append(f"Focus areas: {feedback.focus_areas}")
    return "\n".join(lines)


def build_analysis_prompt(bundle: TranscriptBundle) -> str:
    """
    Build the user prompt for a relationship analysis.

    Args:
        bundle: Transcripts, context, history, feedback and personality profile

    Returns:
        Prompt text asking for a JSON object in ANALYSIS_RESPONSE_SHAPE
    """
    sections = [
        "Here is the data for analysis:",
        build_context_section(bundle),
        build_historical_section(bundle),
        f"TRANSCRIPT 1 (OLDEST - 3 meetings ago):\n{bundle.oldest}",
        f"TRANSCRIPT 2 (MIDDLE - 2 meetings ago):\n{bundle.middle}",
        f"TRANSCRIPT 3 (RECENT - Most recent meeting):\n{bundle.recent}",
    ]

    for index, extra in enumerate(bundle.additional_transcripts, start=1):
        sections.append(f"ADDITIONAL TRANSCRIPT {index} (added after the original three, most recent last):\n{extra}")

    sections.append(build_feedback_section(bundle))

    if bundle.personality_profile:
        sections.append(
            "POD LEADER PERSONALITY PROFILE (fill blindSpotsForYourPersonality with what this person "
            f"is likely to miss in this relationship):\n{bundle.personality_profile}"
        )

    sections.append(
        "Analyze the trajectory across these transcripts and provide a BALANCED, objective assessment.\n"
        "You must identify BOTH strengthening indicators and concerning patterns."
    )
    sections.append(CHURN_RISK_CALIBRATION)
    sections.append(
        "Keep insights concise and actionable. Limit each array to 3-5 most significant items.\n\n"
        "Return a JSON object with exactly this structure:\n"
        f"{json.dumps(ANALYSIS_RESPONSE_SHAPE, indent=2)}"
    )

    return "\n\n".join(section for section in sections if section)


def build_compression_prompt(old_summary: Optional[str], result: Dict[str, Any]) -> str:
    """
    Build the prompt that merges the previous cumulative summary with a new result.

    Only the decision-relevant parts of the result are included.
    """
    bottom_line = result.get("bottomLine") or {}
    signals = result.get("subtleSignals") or {}
    moments = result.get("criticalMoments") or []

    findings = [
        f"Trajectory: {bottom_line.get('trajectory', 'Unknown')}",
        f"Churn risk: {bottom_line.get('churnRisk', 'Unknown')}",
        f"Client confidence: {bottom_line.get('clientConfidence', 'Unknown')}/10",
        f"What's really going on: {bottom_line.get('whatsReallyGoingOn', '')}",
    ]
    if signals.get("concerningPatterns"):
        findings.append("Concerning patterns: " + "; ".join(signals["concerningPatterns"]))
    if signals.get("strengtheningIndicators"):
        findings.append("Strengthening indicators: " + "; ".join(signals["strengtheningIndicators"]))
    for moment in moments[:3]:
        findings.append(f"Critical moment: \"{moment.get('quote', '')}\" - {moment.get('deepMeaning', '')}")

    return (
        f"PREVIOUS SUMMARY:\n{old_summary or 'None (this is the first analysis for this client).'}\n\n"
        "NEW ANALYSIS FINDINGS:\n" + "\n".join(findings) + "\n\n"
        "Write the updated cumulative summary. Keep long-running patterns, note what changed, "
        "and drop details that no longer matter."
    )


def build_follow_up_prompt(
    bundle: TranscriptBundle,
    result: Dict[str, Any],
    history: List[Dict[str, str]],
    question: str,
) -> str:
    """
    Build the prompt for a follow-up question about a finished analysis.

    Args:
        bundle: The input the analysis was produced from
        result: The analysis result
        history: Prior chat turns [{"role": "user"|"model", "content": ...}]
        question: The new question
    """
    bottom_line = result.get("bottomLine") or {}
    conversation = "\n".join(f"{turn.get('role', 'user').upper()}: {turn.get('content', '')}" for turn in history)

    return (
        f"HERE IS THE DATA YOU ANALYZED:\n{build_context_section(bundle)}\n\n"
        f"TRANSCRIPT 1 (OLDEST): {bundle.oldest}\n"
        f"TRANSCRIPT 2 (MIDDLE): {bundle.middle}\n"
        f"TRANSCRIPT 3 (RECENT): {bundle.recent}\n\n"
        "HERE IS YOUR PREVIOUS ANALYSIS SUMMARY:\n"
        f"- Trajectory: {bottom_line.get('trajectory', 'Unknown')}\n"
        f"- Churn Risk: {bottom_line.get('churnRisk', 'Unknown')}\n"
        f"- Primary Concern: {bottom_line.get('whatsReallyGoingOn', 'Unknown')}\n\n"
        f"CONVERSATION HISTORY:\n{conversation or '(none)'}\n\n"
        f"USER QUESTION: \"{question}\""
    )


# ============================================================================
# PROMPT VALIDATION
# ============================================================================


def estimate_token_count(text: str) -> int:
    """
    Estimate token count.

    Uses rough heuristic: ~4 characters per token.
    """
    return len(text) // 4


def validate_prompt_length(prompt: str, max_tokens: int = 400000) -> Tuple[bool, int]:
    """
    Validate that a prompt fits the model's input window.

    Returns:
        (is_valid, estimated_tokens)
    """
    estimated_tokens = estimate_token_count(prompt)
    return estimated_tokens <= max_tokens, estimated_tokens

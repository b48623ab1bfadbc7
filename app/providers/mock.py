import random
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .base import AnalysisClient


def _first_name(requester: Optional[Dict[str, Any]]) -> str:
    name = str((requester or {}).get("name") or "").strip()
    return name.split(" ")[0] if name else "the salesperson"


def _scenarios(user_name: str, company: str) -> List[Dict[str, Any]]:
    return [
        {
            "title": "Sales Discovery Call Analysis",
            "scoreRange": (5, 7),
            "strengths": [
                "Opened the conversation with a friendly greeting",
                "Expressed interest in understanding the prospect's needs",
                "Kept a professional tone throughout the interaction",
                "Showed enthusiasm about the offering",
            ],
            "areasForImprovement": [
                "Few follow-up questions to uncover deeper needs",
                "Shared little specific information about the product",
                "Did not surface or address potential concerns",
                "Missed chances to build rapport by engaging further",
            ],
            "effectiveTechniques": [
                "Friendly greeting and introduction",
                "Open-ended needs assessment questions",
            ],
            "techniquesNeedingWork": [
                "Needs discovery",
                "Product presentation",
                "Objection handling",
                "Closing techniques",
            ],
            "objectionHandling": {
                "score": 3,
                "analysis": "The call never reached a point where objections were handled, which points to a shallow discovery phase.",
            },
            "closingEffectiveness": {
                "score": 2,
                "analysis": "No closing attempt was made, so the call ended without advancing the opportunity.",
            },
            "keyRecommendations": [
                "Ask open-ended questions about the prospect's specific challenges",
                "Tie product details to the interests the prospect mentions",
                "Spend more time building rapport before presenting",
                "Prepare answers for the most common concerns",
                "End every call with a concrete next step",
            ],
            "detailedAnalysis": (
                f"{user_name} opened with a friendly greeting, which set a positive tone. "
                f"The discovery phase stayed shallow: {user_name} rarely followed up on what the prospect said "
                f"and did not explore their goals, so the value of {company}'s offering was never made concrete. "
                "More active listening, structured questioning and a clear proposal for next steps would turn "
                "this introduction into a qualified opportunity."
            ),
        },
        {
            "title": "Product Demo Session Analysis",
            "scoreRange": (6, 8),
            "strengths": [
                "Strong product knowledge",
                "Clear explanation of key features and benefits",
                "Good use of stories to illustrate value",
                "Kept the prospect engaged throughout",
            ],
            "areasForImprovement": [
                "Demo was not tailored to the prospect's situation",
                "Too few qualifying questions before presenting",
                "Focused on features more than business outcomes",
                "No clear next step at the end",
            ],
            "effectiveTechniques": [
                "Product demonstration with examples",
                "Benefit-focused messaging",
                "Storytelling",
            ],
            "techniquesNeedingWork": [
                "Needs assessment",
                "Question-based selling",
                "Trial closing",
                "Next step definition",
            ],
            "objectionHandling": {
                "score": 6,
                "analysis": "Objections were acknowledged but answered without a consistent structure.",
            },
            "closingEffectiveness": {
                "score": 4,
                "analysis": "Closing attempts were light and the demo ended without a commitment.",
            },
            "keyRecommendations": [
                "Customise the demo to the prospect's use case and industry",
                "Ask discovery questions before opening the product",
                "Connect each feature to a measurable business outcome",
                "Rehearse responses to common objections",
                "Close with a specific call to action",
            ],
            "detailedAnalysis": (
                f"{user_name} demonstrated solid product knowledge and kept the energy up. "
                "The demo was generic, though, and spent most of its time on features rather than on the "
                "outcomes the prospect cares about. Starting with a few discovery questions, handling "
                "objections with a repeatable structure and finishing with an agreed next step would make "
                "the same material far more persuasive."
            ),
        },
        {
            "title": "Objection Handling Follow-up Analysis",
            "scoreRange": (4, 7),
            "strengths": [
                "Stayed calm when the prospect pushed back",
                "Acknowledged the prospect's concerns before answering",
                "Referenced relevant customer results",
                "Summarised the discussion accurately",
            ],
            "areasForImprovement": [
                "Answered price concerns before understanding them",
                "Talked over the prospect at key moments",
                "Relied on generic claims instead of evidence",
                "Let the follow-up end without a decision date",
            ],
            "effectiveTechniques": [
                "Acknowledge and clarify",
                "Social proof",
            ],
            "techniquesNeedingWork": [
                "Isolating the real objection",
                "Value quantification",
                "Active listening",
                "Securing commitments",
            ],
            "objectionHandling": {
                "score": 5,
                "analysis": "Concerns were acknowledged, but the underlying objection was rarely isolated before responding.",
            },
            "closingEffectiveness": {
                "score": 3,
                "analysis": "The call closed politely without a decision date or a mutual action plan.",
            },
            "keyRecommendations": [
                "Ask a clarifying question before answering each objection",
                "Quantify the cost of the prospect's current problem",
                "Pause and let the prospect finish their thought",
                "Bring one concrete customer example per concern",
                "Agree on a decision date before hanging up",
            ],
            "detailedAnalysis": (
                f"{user_name} handled pushback with composure and used customer stories to support the case. "
                "Several answers came before the concern was fully understood, which made the responses feel "
                "scripted. Isolating the real objection, quantifying value and ending with a dated commitment "
                "would give this follow-up a much stronger outcome."
            ),
        },
    ]


def generate_mock_analysis(
    requester: Optional[Dict[str, Any]] = None,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    """Build a complete analysis from a canned scenario.

    Content is randomised (scenario, score within its range, duration in
    minutes) but every field of an analysis result is always populated.
    """
    rng = rng or random.Random()
    company = str((requester or {}).get("company") or "").strip() or "the company"
    scenario = rng.choice(_scenarios(_first_name(requester), company))
    low, high = scenario["scoreRange"]
    return {
        "id": f"demo-{int(time.time() * 1000)}",
        "title": scenario["title"],
        "duration": rng.randint(15, 25),
        "overallScore": rng.randint(low, high),
        "date": datetime.now(timezone.utc).isoformat(),
        "strengths": list(scenario["strengths"]),
        "areasForImprovement": list(scenario["areasForImprovement"]),
        "effectiveTechniques": list(scenario["effectiveTechniques"]),
        "techniquesNeedingWork": list(scenario["techniquesNeedingWork"]),
        "objectionHandling": dict(scenario["objectionHandling"]),
        "closingEffectiveness": dict(scenario["closingEffectiveness"]),
        "keyRecommendations": list(scenario["keyRecommendations"]),
        "detailedAnalysis": scenario["detailedAnalysis"],
    }


class MockAnalysisClient(AnalysisClient):
    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None, rng: Optional[random.Random] = None):
        super().__init__(model=model or "mock-analysis-1")
        self._rng = rng

    async def analyze(
        self,
        transcript_text: str,
        *,
        session_id: str,
        duration_seconds: Optional[float],
        metrics: Dict[str, Any],
        requester: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return generate_mock_analysis(requester, rng=self._rng)

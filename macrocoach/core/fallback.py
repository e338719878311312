FALLBACK_CONFIDENCE = 0.7
ERROR_CONFIDENCE = 0.0
MAX_SUGGESTIONS = 3

ERROR_REPLY = "I'm having trouble connecting right now. Please try again in a moment."

# Ordered: the first category whose pattern appears in the message wins.
FALLBACK_CATEGORIES = [
    (
        ("macro", "calorie"),
        "Based on your current intake, focus on hitting your protein target first, then fill the "
        "rest of your calories with carbs and fats around your training. Check today's numbers on "
        "your dashboard and aim to close the biggest gap with your next meal.",
    ),
    (
        ("workout", "exercise"),
        "Consistency beats intensity. Pick a session you can recover from, train with good form, "
        "and eat a protein-rich meal within a couple of hours afterwards. If you trained today, "
        "your calorie target may be slightly higher.",
    ),
    (
        ("sleep", "tired"),
        "Sleep drives recovery, appetite and performance. Aim for 7-9 hours, keep a consistent "
        "bedtime, and cut screens and caffeine late in the day. On a poor-sleep day keep meals "
        "simple and protein-forward.",
    ),
    (
        ("weight", "progress"),
        "Day-to-day weight swings with water, salt and carbs. Look at your weekly average trend "
        "instead of single weigh-ins, and judge progress over two to three weeks.",
    ),
    (
        ("meal", "food", "eat"),
        "Build your next meal around a palm-sized protein source, add vegetables, and choose a "
        "carb portion that matches how active you have been today. Log it so your totals stay "
        "accurate.",
    ),
]

DEFAULT_FALLBACK = (
    "I'm here to help with nutrition, training, sleep and recovery. Ask me about today's macros, "
    "your next workout, or how to hit your goals this week."
)

SUGGESTION_RULES = [
    (("macro", "calorie"), ("What should I eat for dinner?", "Show me my weekly progress")),
    (("workout",), ("Create a workout plan for me", "What should I train tomorrow?")),
    (("sleep", "recovery"), ("How can I improve my sleep?", "Should I take a rest day?")),
]

DEFAULT_SUGGESTIONS = ("How am I doing today?", "What should I focus on?", "Create a plan for me")


def fallback_reply(message: str) -> str:
    """Canned, context-free reply used when the model gives no result."""
    lowered = (message or "").lower()
    for patterns, reply in FALLBACK_CATEGORIES:
        if any(pattern in lowered for pattern in patterns):
            return reply
    return DEFAULT_FALLBACK


def generate_suggestions(message: str) -> list[str]:
    lowered = (message or "").lower()
    suggestions: list[str] = []
    for patterns, questions in SUGGESTION_RULES:
        if any(pattern in lowered for pattern in patterns):
            suggestions.extend(q for q in questions if q not in suggestions)
    if not suggestions:
        suggestions = list(DEFAULT_SUGGESTIONS)
    return suggestions[:MAX_SUGGESTIONS]
